from datetime import datetime, timedelta, timezone

import pytest

from batchroute.errors import InvalidTransition, NotFound
from batchroute.models.domain import BatchStatus, Coordinates, Depot, OptimizedRoute, Order, StopStatus
from batchroute.models.events import BatchStatusChanged, DriverPositionUpdate, StopCompleted
from batchroute.persistence import InMemoryBatchStore
from batchroute.services.batching import BatchLifecycle
from batchroute.services.events import EventBus
from batchroute.services.routing import GeneticParameters, OptimizationScheduler, RouteOptimizer, route_sequences
from batchroute.services.tracking import DeliveryTracker


class _RecordingScheduler:
    def __init__(self) -> None:
        self.requests: list[tuple[str, object, bool]] = []

    def request(self, batch_id, origin=None, *, reoptimize=False):
        self.requests.append((batch_id, origin, reoptimize))
        return None


class _CapturingScheduler(OptimizationScheduler):
    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.futures = []

    def request(self, batch_id, origin=None, *, reoptimize=False):
        future = super().request(batch_id, origin, reoptimize=reoptimize)
        self.futures.append(future)
        return future


def _order(order_id: str, lon: float) -> Order:
    return Order(order_id=order_id, zone="Carmen", weight=1200.0, coordinates=Coordinates(0.0, lon))


def _setup(scheduler=None, *, start: bool = True):
    store = InMemoryBatchStore()
    bus = EventBus()
    events: list[BatchStatusChanged] = []
    bus.subscribe(BatchStatusChanged, events.append)
    lifecycle = BatchLifecycle(store, bus, ready_threshold_kg=3500.0)
    scheduler = scheduler or _RecordingScheduler()
    if isinstance(scheduler, OptimizationScheduler):
        scheduler.store = store
    tracker = DeliveryTracker(store, lifecycle, scheduler, deviation_threshold_km=0.5, arrival_radius_km=0.05)

    orders = [_order("O1", 0.01), _order("O2", 0.02), _order("O3", 0.03)]
    batch = store.create_batch("Carmen", 5000.0, orders[0])
    for order in orders[1:]:
        current = store.get_batch(batch.batch_id)
        store.add_order(batch.batch_id, order, expected_weight=current.accumulated_weight)
    lifecycle.promote_if_ready(batch.batch_id)
    lifecycle.assign_driver(batch.batch_id, "driver-1")
    if start:
        batch = lifecycle.start_delivery(batch.batch_id)
        stop_ids = [stop.stop_id for stop in batch.ordered_stops()]
        route = OptimizedRoute(
            batch_id=batch.batch_id,
            stop_ids=stop_ids,
            total_distance_km=3.3,
            total_duration_min=66.0,
            optimization_score=0.0,
            origin=Coordinates(0.0, 0.0),
        )
        store.apply_route(route, route_sequences(route))
    return store, tracker, scheduler, events, batch.batch_id


def _stop_for(store, batch_id: str, order_id: str) -> str:
    return next(stop.stop_id for stop in store.get_batch(batch_id).stops if stop.order_id == order_id)


def test_in_order_completions_deliver_the_batch():
    store, tracker, scheduler, events, batch_id = _setup()

    for order_id in ("O1", "O2", "O3"):
        tracker.handle_stop_completed(StopCompleted(_stop_for(store, batch_id, order_id), StopStatus.DELIVERED))

    assert store.get_batch(batch_id).status == BatchStatus.DELIVERED
    assert events[-1].new_status == BatchStatus.DELIVERED
    assert scheduler.requests == []
    assert all(order.delivery_status == "delivered" for order in store.orders_for_batch(batch_id))


def test_out_of_order_completion_requests_reoptimization():
    store, tracker, scheduler, _, batch_id = _setup()

    stop = tracker.handle_stop_completed(StopCompleted(_stop_for(store, batch_id, "O3"), StopStatus.DELIVERED))

    assert stop.status == StopStatus.DELIVERED
    assert stop.completed_at is not None
    assert scheduler.requests == [(batch_id, Coordinates(0.0, 0.03), True)]
    assert store.get_batch(batch_id).status == BatchStatus.DELIVERING


def test_skipped_stop_requests_reoptimization_from_driver_position():
    store, tracker, scheduler, _, batch_id = _setup()
    tracker.handle_position(DriverPositionUpdate("driver-1", 0.0, 0.005))

    tracker.handle_stop_completed(StopCompleted(_stop_for(store, batch_id, "O1"), StopStatus.SKIPPED))

    assert scheduler.requests == [(batch_id, Coordinates(0.0, 0.005), True)]
    assert store.get_order("O1").delivery_status == "skipped"


def test_last_stop_skipped_still_delivers_batch():
    store, tracker, scheduler, _, batch_id = _setup()

    for order_id in ("O1", "O2"):
        tracker.handle_stop_completed(StopCompleted(_stop_for(store, batch_id, order_id), StopStatus.DELIVERED))
    tracker.handle_stop_completed(StopCompleted(_stop_for(store, batch_id, "O3"), StopStatus.SKIPPED))

    assert store.get_batch(batch_id).status == BatchStatus.DELIVERED
    assert scheduler.requests == []


def test_repeated_completion_is_harmless():
    store, tracker, _, events, batch_id = _setup()
    stop_id = _stop_for(store, batch_id, "O1")

    first = tracker.handle_stop_completed(StopCompleted(stop_id, StopStatus.DELIVERED))
    second = tracker.handle_stop_completed(StopCompleted(stop_id, StopStatus.SKIPPED))

    assert second.status == StopStatus.DELIVERED
    assert second.completed_at == first.completed_at
    assert store.get_order("O1").delivery_status == "delivered"


def test_completion_requires_delivering_batch():
    store, tracker, _, _, batch_id = _setup(start=False)
    tracker.lifecycle.ensure_stops(batch_id)
    stop_id = _stop_for(store, batch_id, "O1")

    with pytest.raises(InvalidTransition):
        tracker.handle_stop_completed(StopCompleted(stop_id, StopStatus.DELIVERED))

    assert store.find_stop(stop_id).status == StopStatus.PENDING


def test_completion_rejects_non_terminal_outcome_and_unknown_stop():
    store, tracker, _, _, batch_id = _setup()

    with pytest.raises(ValueError):
        tracker.handle_stop_completed(StopCompleted(_stop_for(store, batch_id, "O1"), StopStatus.ARRIVED))
    with pytest.raises(NotFound):
        tracker.handle_stop_completed(StopCompleted("missing", StopStatus.DELIVERED))


def test_position_near_stop_marks_arrival():
    store, tracker, scheduler, _, batch_id = _setup()

    replanned = tracker.handle_position(DriverPositionUpdate("driver-1", 0.0, 0.0101))

    assert replanned is False
    assert store.find_stop(_stop_for(store, batch_id, "O1")).status == StopStatus.ARRIVED
    assert store.find_stop(_stop_for(store, batch_id, "O2")).status == StopStatus.EN_ROUTE
    assert tracker.driver("driver-1").position == Coordinates(0.0, 0.0101)
    assert scheduler.requests == []


def test_position_off_route_requests_reoptimization():
    store, tracker, scheduler, _, batch_id = _setup()

    replanned = tracker.handle_position(DriverPositionUpdate("driver-1", 0.03, 0.005))

    assert replanned is True
    assert scheduler.requests == [(batch_id, Coordinates(0.03, 0.005), True)]


def test_deviation_is_measured_from_last_completed_stop():
    store, tracker, scheduler, _, batch_id = _setup()
    tracker.handle_stop_completed(StopCompleted(_stop_for(store, batch_id, "O1"), StopStatus.DELIVERED))

    # on the O1 -> O2 leg
    assert tracker.handle_position(DriverPositionUpdate("driver-1", 0.001, 0.015)) is False
    # well north of it
    assert tracker.handle_position(DriverPositionUpdate("driver-1", 0.02, 0.015)) is True
    assert len(scheduler.requests) == 1


def test_position_without_delivering_batch_is_recorded_only():
    _, tracker, scheduler, _, _ = _setup(start=False)

    assert tracker.handle_position(DriverPositionUpdate("driver-1", 1.0, 1.0)) is False
    assert tracker.handle_position(DriverPositionUpdate("driver-9", 1.0, 1.0)) is False
    assert tracker.driver("driver-9").position == Coordinates(1.0, 1.0)
    assert scheduler.requests == []


def test_active_batch_lookup():
    _, tracker, _, _, batch_id = _setup(start=False)

    assert tracker.active_batch("driver-1").batch_id == batch_id
    assert tracker.active_batch("driver-2") is None


def test_reoptimized_route_keeps_completed_stops_first():
    params = GeneticParameters(population_size=20, max_generations=60, stagnation_generations=15, seed=11)
    scheduler = _CapturingScheduler(
        InMemoryBatchStore(),
        RouteOptimizer(params, return_to_depot=False, road_distance_factor=1.0),
        depot=Depot("Depot", 0.0, 0.0),
        workers=1,
    )
    try:
        store, tracker, _, _, batch_id = _setup(scheduler)
        tracker.handle_stop_completed(StopCompleted(_stop_for(store, batch_id, "O3"), StopStatus.DELIVERED))
        route = scheduler.futures[-1].result(timeout=10)
    finally:
        scheduler.shutdown()

    ordered = [stop.order_id for stop in store.get_batch(batch_id).ordered_stops()]
    assert ordered == ["O3", "O2", "O1"]
    assert route.origin == Coordinates(0.0, 0.03)


def test_tick_with_stale_batch_lookup_does_not_reopen_delivered_stop(monkeypatch):
    store, tracker, scheduler, _, batch_id = _setup()
    tracker.handle_stop_completed(StopCompleted(_stop_for(store, batch_id, "O1"), StopStatus.DELIVERED))
    snapshot = store.get_batch(batch_id)
    o2 = _stop_for(store, batch_id, "O2")
    tracker.handle_stop_completed(StopCompleted(o2, StopStatus.DELIVERED))

    # the lookup ran before O2 was completed
    monkeypatch.setattr(tracker, "active_batch", lambda driver_id: snapshot)
    tracker.handle_position(DriverPositionUpdate("driver-1", 0.0, 0.02))
    monkeypatch.undo()

    assert store.find_stop(o2).status == StopStatus.DELIVERED
    tracker.handle_stop_completed(StopCompleted(_stop_for(store, batch_id, "O3"), StopStatus.DELIVERED))
    assert store.get_batch(batch_id).status == BatchStatus.DELIVERED
    assert scheduler.requests == []


def test_older_position_tick_is_ignored():
    store, tracker, scheduler, _, batch_id = _setup()
    recent = datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc)

    tracker.handle_position(DriverPositionUpdate("driver-1", 0.0, 0.005, timestamp=recent))
    replanned = tracker.handle_position(
        DriverPositionUpdate("driver-1", 0.03, 0.005, timestamp=recent - timedelta(seconds=30))
    )

    assert replanned is False
    assert tracker.driver("driver-1").position == Coordinates(0.0, 0.005)
    assert tracker.driver("driver-1").updated_at == recent
    assert scheduler.requests == []

    # naive timestamps are read as UTC
    tracker.handle_position(DriverPositionUpdate("driver-1", 0.0, 0.0101, timestamp=datetime(2026, 3, 2, 9, 31)))
    assert tracker.driver("driver-1").position == Coordinates(0.0, 0.0101)
    assert store.find_stop(_stop_for(store, batch_id, "O1")).status == StopStatus.ARRIVED


def test_batch_locks_are_released_after_each_event():
    store, tracker, _, _, batch_id = _setup()

    tracker.handle_position(DriverPositionUpdate("driver-1", 0.0, 0.0101))
    tracker.handle_stop_completed(StopCompleted(_stop_for(store, batch_id, "O1"), StopStatus.DELIVERED))

    assert len(tracker._batch_locks) == 0
