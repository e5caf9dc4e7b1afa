"""Storage contract shared by the in-memory and Supabase batch stores."""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Protocol, Sequence

from ..models.domain import Batch, BatchStatus, OptimizedRoute, Order, Stop, StopStatus


class BatchStore(Protocol):
    """Persistence for orders, batches, stops and routes.

    Every write that touches a batch's weight or status is a compare-and-swap
    against the caller's last read; a lost race raises
    ``ConcurrentUpdateConflict`` and leaves the row unchanged. Stop updates
    given an ``expected`` status follow the same rule.
    """

    def save_order(self, order: Order) -> Order: ...

    def get_order(self, order_id: str) -> Optional[Order]: ...

    def orders_for_batch(self, batch_id: str) -> list[Order]: ...

    def set_order_status(self, order_id: str, delivery_status: str) -> None: ...

    def create_batch(self, zone: str, capacity: float, order: Order) -> Batch: ...

    def get_batch(self, batch_id: str) -> Optional[Batch]: ...

    def list_batches(
        self, *, status: Optional[BatchStatus] = None, zone: Optional[str] = None
    ) -> list[Batch]: ...

    def add_order(self, batch_id: str, order: Order, *, expected_weight: float) -> Batch: ...

    def set_status(
        self,
        batch_id: str,
        *,
        expected: BatchStatus,
        new: BatchStatus,
        driver_id: Optional[str] = None,
    ) -> Batch: ...

    def set_weight(self, batch_id: str, *, expected_weight: float, new_weight: float) -> Batch: ...

    def merge_batches(
        self,
        source_id: str,
        target_id: str,
        *,
        expected_source_weight: float,
        expected_target_weight: float,
    ) -> Batch: ...

    def delete_batch(self, batch_id: str) -> None: ...

    def replace_stops(self, batch_id: str, stops: Sequence[Stop]) -> Batch: ...

    def find_stop(self, stop_id: str) -> Optional[Stop]: ...

    def update_stop(
        self,
        stop_id: str,
        *,
        status: Optional[StopStatus] = None,
        completed_at: Optional[datetime] = None,
        expected: Optional[StopStatus] = None,
    ) -> Stop: ...

    def apply_route(self, route: OptimizedRoute, sequences: dict[str, int]) -> None: ...

    def get_route(self, batch_id: str) -> Optional[OptimizedRoute]: ...
