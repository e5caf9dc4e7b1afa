"""Thread-safe in-memory batch store with per-batch compare-and-swap."""

from __future__ import annotations

import copy
import threading
import uuid
from contextlib import ExitStack
from datetime import datetime
from typing import Optional, Sequence

from ..errors import CapacityExceeded, ConcurrentUpdateConflict, NotFound
from ..models.domain import Batch, BatchStatus, OptimizedRoute, Order, Stop, StopStatus

# Weights are compared with a small tolerance to absorb float rounding.
_EPSILON = 1e-9


def _same_weight(a: float, b: float) -> bool:
    return abs(a - b) <= _EPSILON


class InMemoryBatchStore:
    """Batch rows guarded by one lock each; reads hand out deep copies.

    Lock order is always batch lock(s) first (sorted by id), then the index
    lock, so concurrent writers on different batches never block each other
    for longer than an index update. A batch lock lives exactly as long as its
    batch; lookups of unknown ids never allocate one.
    """

    def __init__(self) -> None:
        self._index_lock = threading.Lock()
        self._batch_locks: dict[str, threading.Lock] = {}
        self._batches: dict[str, Batch] = {}
        self._orders: dict[str, Order] = {}
        self._stop_index: dict[str, str] = {}
        self._routes: dict[str, OptimizedRoute] = {}

    def _lock_for(self, batch_id: str) -> threading.Lock:
        with self._index_lock:
            lock = self._batch_locks.get(batch_id)
        if lock is None:
            raise NotFound(f"Batch {batch_id} not found")
        return lock

    def _require(self, batch_id: str) -> Batch:
        batch = self._batches.get(batch_id)
        if batch is None:
            raise NotFound(f"Batch {batch_id} not found")
        return batch

    # Orders

    def save_order(self, order: Order) -> Order:
        with self._index_lock:
            existing = self._orders.get(order.order_id)
            stored = copy.deepcopy(order)
            if existing is not None and existing.batch_id and not stored.batch_id:
                stored.batch_id = existing.batch_id
            self._orders[order.order_id] = stored
            return copy.deepcopy(stored)

    def get_order(self, order_id: str) -> Optional[Order]:
        with self._index_lock:
            order = self._orders.get(order_id)
            return copy.deepcopy(order) if order else None

    def orders_for_batch(self, batch_id: str) -> list[Order]:
        with self._index_lock:
            return [copy.deepcopy(o) for o in self._orders.values() if o.batch_id == batch_id]

    def set_order_status(self, order_id: str, delivery_status: str) -> None:
        with self._index_lock:
            order = self._orders.get(order_id)
            if order is None:
                raise NotFound(f"Order {order_id} not found")
            order.delivery_status = delivery_status

    def _claim_order(self, order: Order, batch_id: str) -> None:
        stored = self._orders.get(order.order_id)
        if stored is not None and stored.batch_id and stored.batch_id != batch_id:
            raise ConcurrentUpdateConflict(batch_id, f"order {order.order_id} already in batch {stored.batch_id}")
        claimed = copy.deepcopy(order)
        claimed.batch_id = batch_id
        self._orders[order.order_id] = claimed

    # Batches

    def create_batch(self, zone: str, capacity: float, order: Order) -> Batch:
        batch_id = str(uuid.uuid4())
        weight = float(order.weight or 0.0)
        batch = Batch(
            batch_id=batch_id,
            zone=zone,
            capacity=float(capacity),
            accumulated_weight=weight,
            order_ids=[order.order_id],
        )
        # the id is unpublished until the index update, so no batch lock is needed yet
        with self._index_lock:
            self._claim_order(order, batch_id)
            self._batches[batch_id] = batch
            self._batch_locks[batch_id] = threading.Lock()
            return copy.deepcopy(batch)

    def get_batch(self, batch_id: str) -> Optional[Batch]:
        try:
            lock = self._lock_for(batch_id)
        except NotFound:
            return None
        with lock:
            batch = self._batches.get(batch_id)
            return copy.deepcopy(batch) if batch else None

    def list_batches(
        self, *, status: Optional[BatchStatus] = None, zone: Optional[str] = None
    ) -> list[Batch]:
        with self._index_lock:
            batch_ids = list(self._batches)
        batches = []
        for batch_id in batch_ids:
            try:
                lock = self._lock_for(batch_id)
            except NotFound:
                continue
            with lock:
                batch = self._batches.get(batch_id)
                if batch is None:
                    continue
                if (status is None or batch.status == status) and (zone is None or batch.zone == zone):
                    batches.append(copy.deepcopy(batch))
        return sorted(batches, key=lambda b: b.created_at)

    def add_order(self, batch_id: str, order: Order, *, expected_weight: float) -> Batch:
        weight = float(order.weight or 0.0)
        with self._lock_for(batch_id):
            batch = self._require(batch_id)
            if batch.status != BatchStatus.PENDING:
                raise ConcurrentUpdateConflict(batch_id, f"status is {batch.status.value}, expected pending")
            if not _same_weight(batch.accumulated_weight, expected_weight):
                raise ConcurrentUpdateConflict(
                    batch_id, f"weight is {batch.accumulated_weight}, expected {expected_weight}"
                )
            if batch.accumulated_weight + weight > batch.capacity + _EPSILON:
                raise CapacityExceeded(batch_id, weight, batch.headroom)
            with self._index_lock:
                self._claim_order(order, batch_id)
            batch.accumulated_weight += weight
            batch.order_ids.append(order.order_id)
            return copy.deepcopy(batch)

    def set_status(
        self,
        batch_id: str,
        *,
        expected: BatchStatus,
        new: BatchStatus,
        driver_id: Optional[str] = None,
    ) -> Batch:
        with self._lock_for(batch_id):
            batch = self._require(batch_id)
            if batch.status != expected:
                raise ConcurrentUpdateConflict(batch_id, f"status is {batch.status.value}, expected {expected.value}")
            batch.status = new
            if driver_id is not None:
                batch.driver_id = driver_id
            return copy.deepcopy(batch)

    def set_weight(self, batch_id: str, *, expected_weight: float, new_weight: float) -> Batch:
        with self._lock_for(batch_id):
            batch = self._require(batch_id)
            if not _same_weight(batch.accumulated_weight, expected_weight):
                raise ConcurrentUpdateConflict(batch_id, "weight changed during repair")
            batch.accumulated_weight = new_weight
            return copy.deepcopy(batch)

    def merge_batches(
        self,
        source_id: str,
        target_id: str,
        *,
        expected_source_weight: float,
        expected_target_weight: float,
    ) -> Batch:
        if source_id == target_id:
            raise ValueError("Cannot merge a batch into itself")
        with ExitStack() as stack:
            for batch_id in sorted((source_id, target_id)):
                stack.enter_context(self._lock_for(batch_id))
            source = self._require(source_id)
            target = self._require(target_id)
            for batch, expected in ((source, expected_source_weight), (target, expected_target_weight)):
                if batch.status != BatchStatus.PENDING:
                    raise ConcurrentUpdateConflict(batch.batch_id, "only pending batches can merge")
                if not _same_weight(batch.accumulated_weight, expected):
                    raise ConcurrentUpdateConflict(batch.batch_id, "weight changed before merge")
            if source.zone != target.zone:
                raise ValueError(f"Cannot merge zone {source.zone} into zone {target.zone}")
            combined = source.accumulated_weight + target.accumulated_weight
            if combined > target.capacity + _EPSILON:
                raise CapacityExceeded(target_id, source.accumulated_weight, target.headroom)

            with self._index_lock:
                for order_id in source.order_ids:
                    order = self._orders.get(order_id)
                    if order is not None:
                        order.batch_id = target_id
                del self._batches[source_id]
                self._batch_locks.pop(source_id, None)
                self._routes.pop(source_id, None)
                for stop in source.stops:
                    self._stop_index.pop(stop.stop_id, None)
            target.accumulated_weight = combined
            target.order_ids.extend(source.order_ids)
            return copy.deepcopy(target)

    def delete_batch(self, batch_id: str) -> None:
        with self._lock_for(batch_id):
            batch = self._require(batch_id)
            with self._index_lock:
                for order_id in batch.order_ids:
                    order = self._orders.get(order_id)
                    if order is not None and order.batch_id == batch_id:
                        order.batch_id = None
                for stop in batch.stops:
                    self._stop_index.pop(stop.stop_id, None)
                self._routes.pop(batch_id, None)
                del self._batches[batch_id]
                self._batch_locks.pop(batch_id, None)

    # Stops and routes

    def replace_stops(self, batch_id: str, stops: Sequence[Stop]) -> Batch:
        with self._lock_for(batch_id):
            batch = self._require(batch_id)
            with self._index_lock:
                for stop in batch.stops:
                    self._stop_index.pop(stop.stop_id, None)
                for stop in stops:
                    self._stop_index[stop.stop_id] = batch_id
            batch.stops = [copy.deepcopy(stop) for stop in stops]
            return copy.deepcopy(batch)

    def _locate_stop(self, stop_id: str) -> str:
        with self._index_lock:
            batch_id = self._stop_index.get(stop_id)
        if batch_id is None:
            raise NotFound(f"Stop {stop_id} not found")
        return batch_id

    def find_stop(self, stop_id: str) -> Optional[Stop]:
        try:
            batch_id = self._locate_stop(stop_id)
        except NotFound:
            return None
        try:
            lock = self._lock_for(batch_id)
        except NotFound:
            return None
        with lock:
            batch = self._batches.get(batch_id)
            if batch is None:
                return None
            for stop in batch.stops:
                if stop.stop_id == stop_id:
                    return copy.deepcopy(stop)
        return None

    def update_stop(
        self,
        stop_id: str,
        *,
        status: Optional[StopStatus] = None,
        completed_at: Optional[datetime] = None,
        expected: Optional[StopStatus] = None,
    ) -> Stop:
        batch_id = self._locate_stop(stop_id)
        with self._lock_for(batch_id):
            batch = self._require(batch_id)
            for stop in batch.stops:
                if stop.stop_id == stop_id:
                    if expected is not None and stop.status != expected:
                        raise ConcurrentUpdateConflict(
                            batch_id, f"stop {stop_id} is {stop.status.value}, expected {expected.value}"
                        )
                    if status is not None:
                        stop.status = status
                    if completed_at is not None:
                        stop.completed_at = completed_at
                    return copy.deepcopy(stop)
        raise NotFound(f"Stop {stop_id} not found")

    def apply_route(self, route: OptimizedRoute, sequences: dict[str, int]) -> None:
        with self._lock_for(route.batch_id):
            batch = self._require(route.batch_id)
            for stop in batch.stops:
                if stop.stop_id in sequences:
                    stop.sequence = sequences[stop.stop_id]
            self._routes[route.batch_id] = copy.deepcopy(route)

    def get_route(self, batch_id: str) -> Optional[OptimizedRoute]:
        try:
            lock = self._lock_for(batch_id)
        except NotFound:
            return None
        with lock:
            route = self._routes.get(batch_id)
            return copy.deepcopy(route) if route else None
