import copy
from types import SimpleNamespace

import pytest

from batchroute.data.gazetteer_repository import BUILTIN_ZONES
from batchroute.errors import CapacityExceeded, ConcurrentUpdateConflict, NotFound
from batchroute.models.domain import (
    BatchStatus,
    Coordinates,
    LineItem,
    OptimizedRoute,
    Order,
    Stop,
    StopStatus,
)
from batchroute.persistence import SupabaseBatchStore
from batchroute.services.batching import BatchAssigner, BatchLifecycle, WeightEstimator
from batchroute.services.zones import ZoneResolver

_KEYS = {"orders": "order_id", "batch_stops": "stop_id", "batch_routes": "batch_id"}


class _FakeQuery:
    """Enough of the PostgREST query builder to exercise the store."""

    def __init__(self, tables: dict, name: str) -> None:
        self.rows = tables.setdefault(name, [])
        self.key = _KEYS.get(name, "id")
        self.op = "select"
        self.payload = None
        self.filters = []

    def select(self, *_columns):
        self.op = "select"
        return self

    def insert(self, payload):
        self.op, self.payload = "insert", payload
        return self

    def upsert(self, payload):
        self.op, self.payload = "upsert", payload
        return self

    def update(self, values):
        self.op, self.payload = "update", values
        return self

    def delete(self):
        self.op = "delete"
        return self

    def eq(self, column, value):
        self.filters.append(lambda row: row.get(column) == value)
        return self

    def is_(self, column, value):
        assert value == "null"
        self.filters.append(lambda row: row.get(column) is None)
        return self

    def _matches(self, row) -> bool:
        return all(check(row) for check in self.filters)

    def execute(self):
        if self.op == "select":
            data = [row for row in self.rows if self._matches(row)]
        elif self.op == "insert":
            data = self.payload if isinstance(self.payload, list) else [self.payload]
            self.rows.extend(copy.deepcopy(data))
        elif self.op == "upsert":
            data = [self.payload]
            existing = next((row for row in self.rows if row.get(self.key) == self.payload[self.key]), None)
            if existing is None:
                self.rows.append(copy.deepcopy(self.payload))
            else:
                existing.update(copy.deepcopy(self.payload))
        elif self.op == "update":
            data = [row for row in self.rows if self._matches(row)]
            for row in data:
                row.update(copy.deepcopy(self.payload))
        else:
            data = [row for row in self.rows if self._matches(row)]
            self.rows[:] = [row for row in self.rows if not self._matches(row)]
        return SimpleNamespace(data=copy.deepcopy(data))


class _FakeClient:
    def __init__(self) -> None:
        self.tables: dict[str, list] = {}

    def table(self, name: str) -> _FakeQuery:
        return _FakeQuery(self.tables, name)


class _InterleavingQuery(_FakeQuery):
    def __init__(self, client: "_InterleavingClient", name: str) -> None:
        super().__init__(client.tables, name)
        self.client = client
        self.name = name

    def execute(self):
        response = super().execute()
        if self.op == "update" and self.name == "order_batches" and self.client.interleave is not None:
            step, self.client.interleave = self.client.interleave, None
            step()
        return response


class _InterleavingClient(_FakeClient):
    """Runs one callback right after the next batch-row update lands."""

    def __init__(self) -> None:
        super().__init__()
        self.interleave = None

    def table(self, name: str) -> _FakeQuery:
        return _InterleavingQuery(self, name)


def _order(order_id: str, weight: float, lat: float = 8.482, lon: float = 124.647) -> Order:
    return Order(
        order_id=order_id,
        zone="Carmen",
        weight=weight,
        coordinates=Coordinates(lat, lon),
        line_items=[LineItem("sku-1", 2, unit_weight=weight / 2)],
    )


@pytest.fixture
def store():
    return SupabaseBatchStore(_FakeClient())


def _batch(store, *weights: float):
    orders = [_order(f"O{i + 1}", weight) for i, weight in enumerate(weights)]
    for order in orders:
        store.save_order(order)
    batch = store.create_batch("Carmen", 5000.0, orders[0])
    for order in orders[1:]:
        batch = store.add_order(batch.batch_id, order, expected_weight=batch.accumulated_weight)
    return batch


def test_missing_client_is_rejected():
    with pytest.raises(ValueError):
        SupabaseBatchStore(None)


def test_order_round_trip_keeps_claim(store):
    store.save_order(_order("O1", 1000.0))
    batch = store.create_batch("Carmen", 5000.0, _order("O1", 1000.0))

    store.save_order(_order("O1", 1000.0))
    stored = store.get_order("O1")

    assert stored.batch_id == batch.batch_id
    assert stored.coordinates == Coordinates(8.482, 124.647)
    assert stored.line_items == [LineItem("sku-1", 2, unit_weight=500.0)]
    assert store.get_order("missing") is None


def test_add_order_is_compare_and_swap(store):
    batch = _batch(store, 1000.0, 1500.0)
    store.save_order(_order("O3", 500.0))

    with pytest.raises(ConcurrentUpdateConflict):
        store.add_order(batch.batch_id, _order("O3", 500.0), expected_weight=1000.0)

    assert store.get_batch(batch.batch_id).accumulated_weight == 2500.0
    assert store.get_order("O3").batch_id is None


def test_add_order_respects_capacity(store):
    batch = _batch(store, 3000.0)
    store.save_order(_order("O2", 2500.0))

    with pytest.raises(CapacityExceeded):
        store.add_order(batch.batch_id, _order("O2", 2500.0), expected_weight=3000.0)


def test_claimed_order_rolls_back_weight(store):
    first = _batch(store, 1000.0)
    store.save_order(_order("O9", 200.0))
    second = store.create_batch("Carmen", 5000.0, _order("O9", 200.0))

    with pytest.raises(ConcurrentUpdateConflict):
        store.add_order(first.batch_id, _order("O9", 200.0), expected_weight=1000.0)

    assert store.get_batch(first.batch_id).accumulated_weight == 1000.0
    assert store.get_order("O9").batch_id == second.batch_id


def test_set_status_checks_expected_status(store):
    batch = _batch(store, 1000.0)

    updated = store.set_status(batch.batch_id, expected=BatchStatus.PENDING, new=BatchStatus.READY)
    assert updated.status == BatchStatus.READY

    with pytest.raises(ConcurrentUpdateConflict):
        store.set_status(batch.batch_id, expected=BatchStatus.PENDING, new=BatchStatus.READY)
    with pytest.raises(NotFound):
        store.set_status("missing", expected=BatchStatus.PENDING, new=BatchStatus.READY)


def test_list_batches_filters(store):
    batch = _batch(store, 1000.0)
    store.set_status(batch.batch_id, expected=BatchStatus.PENDING, new=BatchStatus.READY)
    store.save_order(_order("O2", 100.0))
    other = store.create_batch("Lapasan", 5000.0, _order("O2", 100.0))

    assert [b.batch_id for b in store.list_batches()] == [batch.batch_id, other.batch_id]
    assert [b.batch_id for b in store.list_batches(status=BatchStatus.PENDING)] == [other.batch_id]
    assert [b.batch_id for b in store.list_batches(zone="Carmen")] == [batch.batch_id]


def test_merge_moves_orders_and_removes_source(store):
    target = _batch(store, 2000.0)
    store.save_order(_order("S1", 800.0))
    source = store.create_batch("Carmen", 5000.0, _order("S1", 800.0))

    merged = store.merge_batches(
        source.batch_id, target.batch_id, expected_source_weight=800.0, expected_target_weight=2000.0
    )

    assert merged.accumulated_weight == 2800.0
    assert sorted(merged.order_ids) == ["O1", "S1"]
    assert store.get_batch(source.batch_id) is None


def test_merge_restores_source_when_target_moved(store):
    target = _batch(store, 2000.0)
    store.save_order(_order("S1", 800.0))
    source = store.create_batch("Carmen", 5000.0, _order("S1", 800.0))

    with pytest.raises(ConcurrentUpdateConflict):
        store.merge_batches(
            source.batch_id, target.batch_id, expected_source_weight=800.0, expected_target_weight=1500.0
        )

    assert store.get_batch(source.batch_id).accumulated_weight == 800.0
    assert store.get_order("S1").batch_id == source.batch_id


def test_merge_keeps_concurrent_orders_out_of_the_source():
    client = _InterleavingClient()
    store = SupabaseBatchStore(client)
    target = _batch(store, 2000.0)
    store.save_order(_order("S1", 800.0))
    source = store.create_batch("Carmen", 5000.0, _order("S1", 800.0))
    late = _order("L1", 500.0)
    store.save_order(late)
    outcomes = []

    def add_into_source():
        current = store.get_batch(source.batch_id)
        for expected_weight in (current.accumulated_weight, 800.0):
            try:
                store.add_order(source.batch_id, late, expected_weight=expected_weight)
            except (CapacityExceeded, ConcurrentUpdateConflict) as exc:
                outcomes.append(type(exc))

    client.interleave = add_into_source
    merged = store.merge_batches(
        source.batch_id, target.batch_id, expected_source_weight=800.0, expected_target_weight=2000.0
    )

    assert outcomes == [CapacityExceeded, ConcurrentUpdateConflict]
    assert merged.accumulated_weight == 2800.0
    assert sorted(merged.order_ids) == ["O1", "S1"]
    assert store.get_order("L1").batch_id is None
    assert store.get_batch(source.batch_id) is None


def test_stops_and_route_are_persisted(store):
    batch = _batch(store, 1000.0, 1000.0)
    stops = [
        Stop(f"{batch.batch_id}:O1", batch.batch_id, "O1", Coordinates(8.48, 124.64), 0),
        Stop(f"{batch.batch_id}:O2", batch.batch_id, "O2", None, 1),
    ]
    store.replace_stops(batch.batch_id, stops)

    route = OptimizedRoute(
        batch_id=batch.batch_id,
        stop_ids=[stops[1].stop_id, stops[0].stop_id],
        total_distance_km=1.5,
        total_duration_min=43.0,
        optimization_score=12.5,
        origin=Coordinates(8.45, 124.63),
    )
    store.apply_route(route, {stops[1].stop_id: 0, stops[0].stop_id: 1})
    store.update_stop(stops[0].stop_id, status=StopStatus.DELIVERED)

    loaded = store.get_batch(batch.batch_id)
    assert [stop.order_id for stop in loaded.ordered_stops()] == ["O2", "O1"]
    assert store.find_stop(stops[0].stop_id).status == StopStatus.DELIVERED
    assert store.find_stop(stops[1].stop_id).coordinates is None
    stored_route = store.get_route(batch.batch_id)
    assert stored_route.stop_ids == route.stop_ids
    assert stored_route.origin == route.origin
    assert stored_route.computed_at == route.computed_at
    with pytest.raises(NotFound):
        store.update_stop("missing", status=StopStatus.DELIVERED)


def test_update_stop_with_expected_status_is_conditional(store):
    batch = _batch(store, 1000.0)
    stop = Stop(f"{batch.batch_id}:O1", batch.batch_id, "O1", Coordinates(8.48, 124.64), 0)
    store.replace_stops(batch.batch_id, [stop])
    store.update_stop(stop.stop_id, status=StopStatus.EN_ROUTE, expected=StopStatus.PENDING)
    store.update_stop(stop.stop_id, status=StopStatus.DELIVERED)

    with pytest.raises(ConcurrentUpdateConflict):
        store.update_stop(stop.stop_id, status=StopStatus.ARRIVED, expected=StopStatus.EN_ROUTE)

    assert store.find_stop(stop.stop_id).status == StopStatus.DELIVERED
    with pytest.raises(NotFound):
        store.update_stop("missing", status=StopStatus.ARRIVED, expected=StopStatus.EN_ROUTE)


def test_delete_batch_releases_orders(store):
    batch = _batch(store, 1000.0)

    store.delete_batch(batch.batch_id)

    assert store.get_batch(batch.batch_id) is None
    assert store.get_order("O1").batch_id is None


def test_assigner_packs_orders_through_supabase(store):
    lifecycle = BatchLifecycle(store, ready_threshold_kg=3500.0)
    assigner = BatchAssigner(
        store,
        lifecycle,
        resolver=ZoneResolver(zones=BUILTIN_ZONES, unknown_zone="unknown"),
        estimator=WeightEstimator(minimum_kg=1.0),
        capacity_kg=5000.0,
    )

    ids = [assigner.assign(_order(f"O{i}", 1000.0)) for i in range(6)]

    assert len(set(ids[:4])) == 1
    assert ids[4] == ids[5] != ids[0]
    first = store.get_batch(ids[0])
    assert first.accumulated_weight == 4000.0
    assert first.status == BatchStatus.READY
    second = store.get_batch(ids[5])
    assert second.accumulated_weight == 2000.0
    assert second.status == BatchStatus.PENDING
