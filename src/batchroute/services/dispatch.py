"""Wiring of the dispatch core behind the event bus."""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Optional

from ..config import settings
from ..errors import NotFound
from ..models.domain import Batch, BatchStatus, Coordinates, Depot, OptimizedRoute, Order, Stop
from ..models.events import (
    AssignDriver,
    DriverPositionUpdate,
    OrderApproved,
    StartDelivery,
    StopCompleted,
)
from ..persistence import BatchStore, FileStorage, build_store
from .batching import BatchAssigner, BatchLifecycle, BatchMerger, MergeResult, ReconcileReport, WeightEstimator
from .events import EventBus
from .routing import GeneticParameters, OptimizationScheduler, RouteOptimizer
from .tracking import DeliveryTracker
from .zones import ZoneResolver

logger = logging.getLogger(__name__)


class DispatchService:
    """Builds the components and subscribes them to the bus.

    ``OrderApproved`` feeds the assigner, ``AssignDriver`` and
    ``StartDelivery`` the lifecycle, and driver ticks and stop completions the
    tracker. Direct method calls are available for callers that need a result.
    """

    def __init__(
        self,
        store: BatchStore | None = None,
        *,
        bus: EventBus | None = None,
        resolver: ZoneResolver | None = None,
        params: GeneticParameters | None = None,
        storage: FileStorage | None = None,
        depot: Depot | None = None,
    ) -> None:
        self.store = store or build_store()
        self.bus = bus or EventBus()
        self.depot = depot or Depot(settings.depot_name, settings.depot_latitude, settings.depot_longitude)
        if storage is None and settings.persist_routes:
            storage = FileStorage()

        self.resolver = resolver or ZoneResolver()
        self.lifecycle = BatchLifecycle(self.store, self.bus)
        self.assigner = BatchAssigner(
            self.store, self.lifecycle, resolver=self.resolver, estimator=WeightEstimator()
        )
        self.merger = BatchMerger(self.store, self.lifecycle)
        self.optimizer = RouteOptimizer(params)
        self.scheduler = OptimizationScheduler(
            self.store, self.optimizer, self.bus, depot=self.depot, storage=storage
        )
        self.lifecycle.route_requester = self.scheduler.request
        self.tracker = DeliveryTracker(self.store, self.lifecycle, self.scheduler)

        self.bus.subscribe(OrderApproved, self._on_order_approved)
        self.bus.subscribe(AssignDriver, self._on_assign_driver)
        self.bus.subscribe(StartDelivery, self._on_start_delivery)
        self.bus.subscribe(DriverPositionUpdate, self.tracker.handle_position)
        self.bus.subscribe(StopCompleted, self.tracker.handle_stop_completed)

    # Event handlers

    def _on_order_approved(self, event: OrderApproved) -> None:
        self.approve_order(event)

    def _on_assign_driver(self, event: AssignDriver) -> None:
        self.lifecycle.assign_driver(event.batch_id, event.driver_id)

    def _on_start_delivery(self, event: StartDelivery) -> None:
        self.lifecycle.start_delivery(event.batch_id)

    # Commands

    def approve_order(self, event: OrderApproved) -> Order:
        order = Order(
            order_id=event.order_id,
            line_items=list(event.line_items),
            coordinates=event.coordinates,
            address=event.address,
            zone_hint=event.zone_hint,
            weight=event.weight,
        )
        self.assigner.assign(order)
        stored = self.store.get_order(order.order_id)
        if stored is None:
            raise NotFound(f"Order {order.order_id} not found after assignment")
        return stored

    def start_delivery(self, batch_id: str, origin: Coordinates | None = None) -> Batch:
        return self.lifecycle.start_delivery(batch_id, origin)

    def reoptimize(
        self,
        batch_id: str,
        position: Coordinates | None = None,
        *,
        timeout: float | None = None,
    ) -> Optional[OptimizedRoute]:
        """Re-plan a batch and wait for the result; None when a newer request won."""

        batch = self.get_batch(batch_id)
        if not batch.stops:
            self.lifecycle.ensure_stops(batch_id)
        if position is None and batch.driver_id:
            driver = self.tracker.driver(batch.driver_id)
            position = driver.position if driver else None
        future = self.scheduler.request(batch_id, position, reoptimize=True)
        return future.result(timeout=timeout)

    def merge_batches(self, zone: str | None = None) -> list[MergeResult]:
        return self.merger.merge_zone(zone) if zone else self.merger.merge_all()

    def reconcile(self) -> ReconcileReport:
        return self.lifecycle.reconcile_all()

    # Queries

    def get_batch(self, batch_id: str) -> Batch:
        batch = self.store.get_batch(batch_id)
        if batch is None:
            raise NotFound(f"Batch {batch_id} not found")
        return batch

    def list_batches(self, status: BatchStatus | None = None, zone: str | None = None) -> list[Batch]:
        return self.store.list_batches(status=status, zone=zone)

    def get_route(self, batch_id: str) -> Optional[OptimizedRoute]:
        return self.store.get_route(batch_id)

    def active_batch_for_driver(self, driver_id: str) -> Optional[Batch]:
        return self.tracker.active_batch(driver_id)

    def find_stop(self, stop_id: str) -> Stop:
        stop = self.store.find_stop(stop_id)
        if stop is None:
            raise NotFound(f"Stop {stop_id} not found")
        return stop

    def shutdown(self) -> None:
        self.scheduler.shutdown(wait=False)


@lru_cache()
def get_dispatch_service() -> DispatchService:
    """Process-wide service instance used by the HTTP layer."""

    return DispatchService()
