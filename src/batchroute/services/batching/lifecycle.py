"""Batch status state machine and the reconciliation pass that keeps it honest."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from ...config import settings
from ...errors import ConcurrentUpdateConflict, DispatchError, InvalidTransition, NotFound
from ...models.domain import Batch, BatchStatus, Coordinates, Stop, StopStatus
from ...models.events import BatchStatusChanged
from ...persistence.store import BatchStore
from ..events import EventBus

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[BatchStatus, frozenset[BatchStatus]] = {
    BatchStatus.PENDING: frozenset({BatchStatus.READY}),
    BatchStatus.READY: frozenset({BatchStatus.ASSIGNED}),
    BatchStatus.ASSIGNED: frozenset({BatchStatus.DELIVERING}),
    BatchStatus.DELIVERING: frozenset({BatchStatus.DELIVERED}),
    BatchStatus.DELIVERED: frozenset(),
}

_DONE_ORDER_STATUSES = {StopStatus.DELIVERED.value, StopStatus.SKIPPED.value}
_WEIGHT_TOLERANCE = 1e-6

RouteRequester = Callable[[str, Optional[Coordinates]], object]


@dataclass(slots=True)
class ReconcileReport:
    promoted: List[str] = field(default_factory=list)
    delivered: List[str] = field(default_factory=list)
    reweighed: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)


def build_stops(batch: Batch, orders) -> list[Stop]:
    """One stop per order, in approval order, with provisional sequence indices."""

    by_id = {order.order_id: order for order in orders}
    stops: list[Stop] = []
    for order_id in batch.order_ids:
        order = by_id.get(order_id)
        if order is None:
            continue
        stops.append(
            Stop(
                stop_id=f"{batch.batch_id}:{order_id}",
                batch_id=batch.batch_id,
                order_id=order_id,
                coordinates=order.coordinates,
                sequence=len(stops),
            )
        )
    return stops


class BatchLifecycle:
    """Applies status transitions as compare-and-swap writes and emits
    ``BatchStatusChanged`` for each one that lands.

    Anything outside ``ALLOWED_TRANSITIONS`` is rejected with
    ``InvalidTransition`` and the batch is left untouched.
    """

    def __init__(
        self,
        store: BatchStore,
        bus: EventBus | None = None,
        *,
        ready_threshold_kg: float | None = None,
        max_retries: int | None = None,
    ) -> None:
        self.store = store
        self.bus = bus
        self.ready_threshold_kg = (
            ready_threshold_kg if ready_threshold_kg is not None else settings.ready_threshold_kg
        )
        self.max_retries = max_retries or settings.assign_max_retries
        self.route_requester: RouteRequester | None = None

    def _load(self, batch_id: str) -> Batch:
        batch = self.store.get_batch(batch_id)
        if batch is None:
            raise NotFound(f"Batch {batch_id} not found")
        return batch

    def transition(
        self,
        batch_id: str,
        new_status: BatchStatus,
        *,
        driver_id: str | None = None,
    ) -> Batch:
        for _ in range(self.max_retries):
            batch = self._load(batch_id)
            current = batch.status
            if new_status not in ALLOWED_TRANSITIONS[current]:
                logger.warning(f"Rejected transition {current.value} -> {new_status.value} for batch {batch_id}")
                raise InvalidTransition(batch_id, current.value, new_status.value)
            try:
                updated = self.store.set_status(batch_id, expected=current, new=new_status, driver_id=driver_id)
            except ConcurrentUpdateConflict as exc:
                logger.debug(f"Retrying transition after conflict: {exc}")
                continue
            logger.info(f"Batch {batch_id}: {current.value} -> {new_status.value}")
            if self.bus is not None:
                self.bus.publish(BatchStatusChanged(batch_id=batch_id, old_status=current, new_status=new_status))
            return updated
        raise ConcurrentUpdateConflict(batch_id, f"gave up on transition to {new_status.value}")

    def promote_if_ready(self, batch_id: str) -> bool:
        """Move a pending batch to ready once its weight reaches the threshold."""

        batch = self.store.get_batch(batch_id)
        if batch is None or batch.status != BatchStatus.PENDING:
            return False
        if batch.accumulated_weight < self.ready_threshold_kg:
            return False
        try:
            self.transition(batch_id, BatchStatus.READY)
        except InvalidTransition:
            # another writer promoted it first
            return False
        return True

    def assign_driver(self, batch_id: str, driver_id: str) -> Batch:
        if not driver_id:
            raise ValueError("driver_id is required")
        return self.transition(batch_id, BatchStatus.ASSIGNED, driver_id=driver_id)

    def ensure_stops(self, batch_id: str) -> Batch:
        """Create the batch's stops from its orders if it has none yet."""

        batch = self._load(batch_id)
        if batch.stops:
            return batch
        stops = build_stops(batch, self.store.orders_for_batch(batch_id))
        return self.store.replace_stops(batch_id, stops)

    def start_delivery(self, batch_id: str, origin: Coordinates | None = None) -> Batch:
        batch = self._load(batch_id)
        if batch.status != BatchStatus.ASSIGNED:
            logger.warning(f"Rejected transition {batch.status.value} -> delivering for batch {batch_id}")
            raise InvalidTransition(batch_id, batch.status.value, BatchStatus.DELIVERING.value)

        self.ensure_stops(batch_id)
        self.transition(batch_id, BatchStatus.DELIVERING)
        for stop in self._load(batch_id).stops:
            if stop.status != StopStatus.PENDING:
                continue
            try:
                self.store.update_stop(stop.stop_id, status=StopStatus.EN_ROUTE, expected=StopStatus.PENDING)
            except ConcurrentUpdateConflict as exc:
                logger.debug(f"Stop {stop.stop_id} left pending before dispatch: {exc}")

        if self.store.get_route(batch_id) is None and self.route_requester is not None:
            self.route_requester(batch_id, origin)
        return self._load(batch_id)

    def reconcile(self, batch_id: str) -> Batch:
        """Mark a delivering batch delivered once all of its stops are done.

        Safe to call any number of times; a batch that is not delivering, or
        still has open stops, is returned unchanged.
        """

        batch = self._load(batch_id)
        if batch.status != BatchStatus.DELIVERING or not self._is_complete(batch):
            return batch
        try:
            return self.transition(batch_id, BatchStatus.DELIVERED)
        except InvalidTransition:
            return self._load(batch_id)

    def _is_complete(self, batch: Batch) -> bool:
        if batch.stops:
            return all(stop.status.is_terminal for stop in batch.stops)
        orders = self.store.orders_for_batch(batch.batch_id)
        return bool(orders) and all(order.delivery_status in _DONE_ORDER_STATUSES for order in orders)

    def _repair_weight(self, batch: Batch) -> Batch:
        orders = self.store.orders_for_batch(batch.batch_id)
        actual = sum(float(order.weight or 0.0) for order in orders)
        if abs(actual - batch.accumulated_weight) <= _WEIGHT_TOLERANCE:
            return batch
        logger.warning(
            f"Batch {batch.batch_id} weight drifted: stored {batch.accumulated_weight:.2f}kg, "
            f"orders sum to {actual:.2f}kg"
        )
        return self.store.set_weight(
            batch.batch_id, expected_weight=batch.accumulated_weight, new_weight=actual
        )

    def reconcile_all(self) -> ReconcileReport:
        """Restore batch invariants across the whole store.

        Repairs weight drift, removes pending batches that hold no orders,
        promotes pending batches already past the threshold and closes
        delivering batches whose stops are all done. Per-batch failures are
        logged and do not stop the pass.
        """

        report = ReconcileReport()
        for batch in self.store.list_batches():
            try:
                if batch.status == BatchStatus.DELIVERED:
                    continue
                if batch.status == BatchStatus.PENDING and not self.store.orders_for_batch(batch.batch_id):
                    logger.warning(f"Removing empty pending batch {batch.batch_id}")
                    self.store.delete_batch(batch.batch_id)
                    report.removed.append(batch.batch_id)
                    continue

                repaired = self._repair_weight(batch)
                if repaired.accumulated_weight != batch.accumulated_weight:
                    report.reweighed.append(batch.batch_id)

                if repaired.status == BatchStatus.PENDING and self.promote_if_ready(batch.batch_id):
                    logger.warning(f"Promoted lagging batch {batch.batch_id}")
                    report.promoted.append(batch.batch_id)
                elif repaired.status == BatchStatus.DELIVERING:
                    if self.reconcile(batch.batch_id).status == BatchStatus.DELIVERED:
                        logger.warning(f"Closed stuck batch {batch.batch_id}")
                        report.delivered.append(batch.batch_id)
            except DispatchError as exc:
                logger.warning(f"Reconciliation skipped batch {batch.batch_id}: {exc}")
                report.failed.append(batch.batch_id)
        return report
