"""Live delivery tracking: driver positions, stop completions and re-planning."""

from __future__ import annotations

import logging
import threading
import weakref
from datetime import datetime, timezone
from typing import Optional

from ...config import settings
from ...errors import ConcurrentUpdateConflict, InvalidTransition, NotFound
from ...models.domain import Batch, BatchStatus, Coordinates, Driver, Stop, StopStatus, utcnow
from ...models.events import DriverPositionUpdate, StopCompleted
from ...persistence.store import BatchStore
from ..batching.lifecycle import BatchLifecycle
from ..geospatial import distance_km, point_to_segment_km
from ..routing.scheduler import OptimizationScheduler

logger = logging.getLogger(__name__)

_ACTIVE_STATUSES = (BatchStatus.ASSIGNED, BatchStatus.DELIVERING)


def _aware(moment: datetime) -> datetime:
    return moment if moment.tzinfo is not None else moment.replace(tzinfo=timezone.utc)


class DeliveryTracker:
    """Consumes driver ticks and stop outcomes for batches on the road.

    Events for one batch are handled one at a time in arrival order; different
    batches proceed independently. A position tick older than the one already
    recorded for its driver is dropped.
    """

    def __init__(
        self,
        store: BatchStore,
        lifecycle: BatchLifecycle,
        scheduler: OptimizationScheduler,
        *,
        deviation_threshold_km: float | None = None,
        arrival_radius_km: float | None = None,
    ) -> None:
        self.store = store
        self.lifecycle = lifecycle
        self.scheduler = scheduler
        self.deviation_threshold_km = deviation_threshold_km or settings.deviation_threshold_km
        self.arrival_radius_km = (
            settings.arrival_radius_km if arrival_radius_km is None else arrival_radius_km
        )
        self._drivers: dict[str, Driver] = {}
        self._drivers_lock = threading.Lock()
        self._batch_locks: weakref.WeakValueDictionary[str, threading.Lock] = weakref.WeakValueDictionary()
        self._batch_locks_guard = threading.Lock()

    def _batch_lock(self, batch_id: str) -> threading.Lock:
        with self._batch_locks_guard:
            lock = self._batch_locks.get(batch_id)
            if lock is None:
                lock = self._batch_locks[batch_id] = threading.Lock()
            return lock

    def driver(self, driver_id: str) -> Optional[Driver]:
        with self._drivers_lock:
            return self._drivers.get(driver_id)

    def active_batch(self, driver_id: str) -> Optional[Batch]:
        """The assigned or delivering batch held by ``driver_id``, oldest first."""

        for status in _ACTIVE_STATUSES:
            for batch in self.store.list_batches(status=status):
                if batch.driver_id == driver_id:
                    return batch
        return None

    def handle_position(self, update: DriverPositionUpdate) -> bool:
        """Record the driver's position; returns True when a re-plan was requested."""

        position = Coordinates(update.latitude, update.longitude)
        stamp = _aware(update.timestamp)
        with self._drivers_lock:
            known = self._drivers.get(update.driver_id)
            if known is not None and known.updated_at is not None and stamp < _aware(known.updated_at):
                logger.debug(
                    f"Dropping stale position for driver {update.driver_id} "
                    f"({stamp.isoformat()} < {known.updated_at.isoformat()})"
                )
                return False
            self._drivers[update.driver_id] = Driver(
                driver_id=update.driver_id, position=position, updated_at=stamp
            )

        candidate = self.active_batch(update.driver_id)
        if candidate is None or candidate.status != BatchStatus.DELIVERING:
            return False

        with self._batch_lock(candidate.batch_id):
            # stops may have been completed between the lookup and the lock
            batch = self.store.get_batch(candidate.batch_id)
            if batch is None or batch.status != BatchStatus.DELIVERING:
                return False
            open_stops = [stop for stop in batch.ordered_stops() if not stop.status.is_terminal]
            for stop in open_stops:
                if (
                    stop.status == StopStatus.EN_ROUTE
                    and stop.coordinates is not None
                    and distance_km(position, stop.coordinates) <= self.arrival_radius_km
                ):
                    try:
                        self.store.update_stop(
                            stop.stop_id, status=StopStatus.ARRIVED, expected=StopStatus.EN_ROUTE
                        )
                    except ConcurrentUpdateConflict as exc:
                        logger.debug(f"Arrival at stop {stop.stop_id} not recorded: {exc}")
                        continue
                    logger.info(f"Driver {update.driver_id} arrived at stop {stop.stop_id}")

            deviation = self._deviation_km(batch, open_stops, position)
            if deviation is not None and deviation > self.deviation_threshold_km:
                logger.info(
                    f"Driver {update.driver_id} is {deviation:.2f}km off route for batch "
                    f"{batch.batch_id}; re-optimizing"
                )
                self.scheduler.request(batch.batch_id, position, reoptimize=True)
                return True
        return False

    def _deviation_km(self, batch: Batch, open_stops: list[Stop], position: Coordinates) -> float | None:
        """Distance from the leg the driver should currently be on."""

        target = next((stop for stop in open_stops if stop.coordinates is not None), None)
        if target is None:
            return None
        completed = [
            stop
            for stop in batch.ordered_stops()
            if stop.status.is_terminal and stop.coordinates is not None
        ]
        if completed:
            leg_start = completed[-1].coordinates
        else:
            route = self.store.get_route(batch.batch_id)
            leg_start = route.origin if route else target.coordinates
        return point_to_segment_km(position, leg_start, target.coordinates)

    def handle_stop_completed(self, event: StopCompleted) -> Stop:
        if not event.outcome.is_terminal:
            raise ValueError(f"Stop outcome must be delivered or skipped, got '{event.outcome.value}'")

        stop = self.store.find_stop(event.stop_id)
        if stop is None:
            raise NotFound(f"Stop {event.stop_id} not found")

        with self._batch_lock(stop.batch_id):
            batch = self.store.get_batch(stop.batch_id)
            if batch is None:
                raise NotFound(f"Batch {stop.batch_id} not found")
            if batch.status != BatchStatus.DELIVERING:
                logger.warning(
                    f"Ignoring completion of stop {event.stop_id}: batch {batch.batch_id} is {batch.status.value}"
                )
                raise InvalidTransition(batch.batch_id, batch.status.value, f"stop {event.outcome.value}")

            current = next((s for s in batch.stops if s.stop_id == event.stop_id), stop)
            if current.status.is_terminal:
                logger.debug(f"Stop {event.stop_id} already {current.status.value}")
                self.lifecycle.reconcile(batch.batch_id)
                return current

            open_stops = [s for s in batch.ordered_stops() if not s.status.is_terminal]
            out_of_order = bool(open_stops) and open_stops[0].stop_id != event.stop_id

            updated = self.store.update_stop(
                event.stop_id, status=event.outcome, completed_at=utcnow(), expected=current.status
            )
            self.store.set_order_status(updated.order_id, event.outcome.value)

            still_open = [s for s in open_stops if s.stop_id != event.stop_id]
            if still_open and (out_of_order or event.outcome == StopStatus.SKIPPED):
                reason = "skipped" if event.outcome == StopStatus.SKIPPED else "completed out of order"
                logger.info(f"Stop {event.stop_id} {reason}; re-optimizing batch {batch.batch_id}")
                driver = self.driver(batch.driver_id) if batch.driver_id else None
                origin = driver.position if driver and driver.position else updated.coordinates
                self.scheduler.request(batch.batch_id, origin, reoptimize=True)

            self.lifecycle.reconcile(batch.batch_id)
            return updated
