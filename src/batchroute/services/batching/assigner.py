"""Zone-scoped best-fit packing of approved orders into batches."""

from __future__ import annotations

import logging
import threading
import weakref
from typing import Iterable

from ...config import settings
from ...errors import CapacityExceeded, ConcurrentUpdateConflict, NotFound
from ...models.domain import Batch, BatchStatus, Order
from ...persistence.store import BatchStore
from ..zones import ZoneResolver
from .lifecycle import BatchLifecycle
from .weight import WeightEstimator

logger = logging.getLogger(__name__)


def best_fit(batches: Iterable[Batch], weight: float, excluded: set[str] | None = None) -> Batch | None:
    """Pick the fitting batch with the least headroom, oldest first on ties."""

    excluded = excluded or set()
    fitting = [
        batch
        for batch in batches
        if batch.batch_id not in excluded
        and batch.status == BatchStatus.PENDING
        and batch.accumulated_weight + weight <= batch.capacity
    ]
    if not fitting:
        return None
    return min(fitting, key=lambda batch: (batch.headroom, batch.created_at))


class BatchAssigner:
    """Places each approved order into exactly one batch of its zone.

    Topping up an existing batch is a compare-and-swap on the batch weight, so
    concurrent approvals never overfill a batch; the loser of a race simply
    re-reads and tries again. Opening a new batch is serialized per zone so a
    burst of approvals fills the batch one of them opened instead of each
    opening its own.
    """

    def __init__(
        self,
        store: BatchStore,
        lifecycle: BatchLifecycle,
        *,
        resolver: ZoneResolver | None = None,
        estimator: WeightEstimator | None = None,
        capacity_kg: float | None = None,
        max_retries: int | None = None,
    ) -> None:
        self.store = store
        self.lifecycle = lifecycle
        self.resolver = resolver or ZoneResolver()
        self.estimator = estimator or WeightEstimator()
        self.capacity_kg = capacity_kg if capacity_kg is not None else settings.batch_capacity_kg
        self.max_retries = max_retries or settings.assign_max_retries
        self._zone_locks: weakref.WeakValueDictionary[str, threading.Lock] = weakref.WeakValueDictionary()
        self._zone_locks_guard = threading.Lock()

    def _zone_lock(self, zone: str) -> threading.Lock:
        with self._zone_locks_guard:
            lock = self._zone_locks.get(zone)
            if lock is None:
                lock = self._zone_locks[zone] = threading.Lock()
            return lock

    def prepare(self, order: Order) -> Order:
        """Attach zone and weight when checkout did not supply them."""

        if not order.zone:
            order.zone = self.resolver.resolve(order.address, order.coordinates, order.zone_hint)
        else:
            order.zone = self.resolver.normalize(order.zone) or self.resolver.unknown_zone
        if order.weight is None or order.weight <= 0:
            order.weight = self.estimator.estimate(order)
        return order

    def assign(self, order: Order) -> str:
        existing = self.store.get_order(order.order_id)
        if existing is not None and existing.batch_id:
            logger.debug(f"Order {order.order_id} already in batch {existing.batch_id}")
            return existing.batch_id

        order = self.prepare(order)
        order.batch_id = None
        self.store.save_order(order)

        if order.weight > self.capacity_kg:
            batch = self._open_dedicated(order)
        else:
            batch = self._place(order)

        logger.info(f"Order {order.order_id} ({order.weight:.2f}kg, {order.zone}) -> batch {batch.batch_id}")
        self.lifecycle.promote_if_ready(batch.batch_id)
        return batch.batch_id

    def _candidates(self, zone: str) -> list[Batch]:
        return self.store.list_batches(status=BatchStatus.PENDING, zone=zone)

    def _claimed_batch(self, order: Order) -> Batch | None:
        """The batch that already owns ``order``, if a racing assign got there first."""

        stored = self.store.get_order(order.order_id)
        if stored is None or not stored.batch_id:
            return None
        batch = self.store.get_batch(stored.batch_id)
        if batch is None:
            raise NotFound(f"Batch {stored.batch_id} not found for order {order.order_id}")
        return batch

    def _try_add(self, candidate: Batch, order: Order, excluded: set[str]) -> Batch | None:
        try:
            return self.store.add_order(candidate.batch_id, order, expected_weight=candidate.accumulated_weight)
        except CapacityExceeded as exc:
            logger.debug(f"Skipping batch: {exc}")
            excluded.add(candidate.batch_id)
        except ConcurrentUpdateConflict as exc:
            logger.debug(f"Retrying order {order.order_id}: {exc}")
            return self._claimed_batch(order)
        return None

    def _place(self, order: Order) -> Batch:
        excluded: set[str] = set()
        for _ in range(self.max_retries):
            candidate = best_fit(self._candidates(order.zone), order.weight, excluded)
            if candidate is None:
                break
            batch = self._try_add(candidate, order, excluded)
            if batch is not None:
                return batch
        return self._place_serialized(order, excluded)

    def _place_serialized(self, order: Order, excluded: set[str]) -> Batch:
        with self._zone_lock(order.zone):
            while True:
                claimed = self._claimed_batch(order)
                if claimed is not None:
                    return claimed
                candidate = best_fit(self._candidates(order.zone), order.weight, excluded)
                if candidate is None:
                    return self.store.create_batch(order.zone, self.capacity_kg, order)
                batch = self._try_add(candidate, order, excluded)
                if batch is not None:
                    return batch

    def _open_dedicated(self, order: Order) -> Batch:
        logger.warning(
            f"Order {order.order_id} weighs {order.weight:.2f}kg, above batch capacity "
            f"{self.capacity_kg:.2f}kg; opening a dedicated batch"
        )
        return self.store.create_batch(order.zone, max(self.capacity_kg, order.weight), order)
