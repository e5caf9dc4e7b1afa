"""Supabase-backed batch store.

Tables:
    orders         order_id, address, zone, zone_hint, weight, batch_id,
                   delivery_status, latitude, longitude, line_items, approved_at
    order_batches  id, barangay, total_weight, max_weight, status, driver_id, created_at
    batch_stops    stop_id, batch_id, order_id, latitude, longitude, sequence,
                   status, completed_at
    batch_routes   batch_id, payload

Compare-and-swap is expressed as a filtered UPDATE: the row only changes when
the filters still match the caller's last read, and an empty result means the
race was lost.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any, Optional, Sequence

from ..errors import CapacityExceeded, ConcurrentUpdateConflict, NotFound
from ..models.domain import (
    Batch,
    BatchStatus,
    Coordinates,
    LineItem,
    OptimizedRoute,
    Order,
    Stop,
    StopStatus,
    utcnow,
)

logger = logging.getLogger(__name__)

ORDERS = "orders"
BATCHES = "order_batches"
STOPS = "batch_stops"
ROUTES = "batch_routes"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_dt(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def _coords(lat: Any, lon: Any) -> Optional[Coordinates]:
    if lat is None or lon is None:
        return None
    return Coordinates(float(lat), float(lon))


def _order_to_row(order: Order) -> dict[str, Any]:
    row: dict[str, Any] = {
        "order_id": order.order_id,
        "address": order.address,
        "zone": order.zone,
        "zone_hint": order.zone_hint,
        "weight": order.weight,
        "delivery_status": order.delivery_status,
        "latitude": order.coordinates.latitude if order.coordinates else None,
        "longitude": order.coordinates.longitude if order.coordinates else None,
        "line_items": [
            {
                "product_id": item.product_id,
                "quantity": item.quantity,
                "unit_weight": item.unit_weight,
                "unit_price": item.unit_price,
            }
            for item in order.line_items
        ],
        "approved_at": _iso(order.approved_at),
    }
    # an unset batch_id must not clear an existing claim
    if order.batch_id:
        row["batch_id"] = order.batch_id
    return row


def _order_from_row(row: dict[str, Any]) -> Order:
    return Order(
        order_id=str(row["order_id"]),
        line_items=[
            LineItem(
                product_id=str(item.get("product_id", "")),
                quantity=int(item.get("quantity") or 0),
                unit_weight=item.get("unit_weight"),
                unit_price=float(item.get("unit_price") or 0.0),
            )
            for item in (row.get("line_items") or [])
        ],
        coordinates=_coords(row.get("latitude"), row.get("longitude")),
        address=row.get("address") or "",
        zone_hint=row.get("zone_hint"),
        zone=row.get("zone"),
        weight=float(row["weight"]) if row.get("weight") is not None else None,
        batch_id=row.get("batch_id"),
        delivery_status=row.get("delivery_status") or "pending",
        approved_at=_parse_dt(row.get("approved_at")) or utcnow(),
    )


def _stop_to_row(stop: Stop) -> dict[str, Any]:
    return {
        "stop_id": stop.stop_id,
        "batch_id": stop.batch_id,
        "order_id": stop.order_id,
        "latitude": stop.coordinates.latitude if stop.coordinates else None,
        "longitude": stop.coordinates.longitude if stop.coordinates else None,
        "sequence": stop.sequence,
        "status": stop.status.value,
        "completed_at": _iso(stop.completed_at),
    }


def _stop_from_row(row: dict[str, Any]) -> Stop:
    return Stop(
        stop_id=str(row["stop_id"]),
        batch_id=str(row["batch_id"]),
        order_id=str(row["order_id"]),
        coordinates=_coords(row.get("latitude"), row.get("longitude")),
        sequence=int(row.get("sequence") or 0),
        status=StopStatus(row.get("status") or StopStatus.PENDING.value),
        completed_at=_parse_dt(row.get("completed_at")),
    )


def _route_to_payload(route: OptimizedRoute) -> dict[str, Any]:
    return {
        "batch_id": route.batch_id,
        "stop_ids": list(route.stop_ids),
        "total_distance_km": route.total_distance_km,
        "total_duration_min": route.total_duration_min,
        "optimization_score": route.optimization_score,
        "origin": {"latitude": route.origin.latitude, "longitude": route.origin.longitude},
        "fitness": route.fitness,
        "generations": route.generations,
        "fuel_cost_estimate": route.fuel_cost_estimate,
        "timed_out": route.timed_out,
        "computed_at": _iso(route.computed_at),
    }


def _route_from_payload(payload: dict[str, Any]) -> OptimizedRoute:
    origin = payload.get("origin") or {}
    return OptimizedRoute(
        batch_id=str(payload["batch_id"]),
        stop_ids=[str(stop_id) for stop_id in payload.get("stop_ids", [])],
        total_distance_km=float(payload.get("total_distance_km") or 0.0),
        total_duration_min=float(payload.get("total_duration_min") or 0.0),
        optimization_score=float(payload.get("optimization_score") or 0.0),
        origin=Coordinates(float(origin.get("latitude", 0.0)), float(origin.get("longitude", 0.0))),
        fitness=float(payload.get("fitness") or 0.0),
        generations=int(payload.get("generations") or 0),
        fuel_cost_estimate=float(payload.get("fuel_cost_estimate") or 0.0),
        timed_out=bool(payload.get("timed_out", False)),
        computed_at=_parse_dt(payload.get("computed_at")) or utcnow(),
    )


class SupabaseBatchStore:
    """Batch store on top of a Supabase (PostgREST) client."""

    def __init__(self, client: Any) -> None:
        if client is None:
            raise ValueError("Supabase client is not configured (set BR_SUPABASE_URL and BR_SUPABASE_KEY)")
        self.client = client

    def _table(self, name: str):
        return self.client.table(name)

    # Orders

    def save_order(self, order: Order) -> Order:
        self._table(ORDERS).upsert(_order_to_row(order)).execute()
        stored = self.get_order(order.order_id)
        return stored if stored is not None else order

    def get_order(self, order_id: str) -> Optional[Order]:
        response = self._table(ORDERS).select("*").eq("order_id", order_id).execute()
        rows = response.data or []
        return _order_from_row(rows[0]) if rows else None

    def orders_for_batch(self, batch_id: str) -> list[Order]:
        response = self._table(ORDERS).select("*").eq("batch_id", batch_id).execute()
        orders = [_order_from_row(row) for row in (response.data or [])]
        return sorted(orders, key=lambda order: order.approved_at)

    def set_order_status(self, order_id: str, delivery_status: str) -> None:
        response = (
            self._table(ORDERS)
            .update({"delivery_status": delivery_status})
            .eq("order_id", order_id)
            .execute()
        )
        if not response.data:
            raise NotFound(f"Order {order_id} not found")

    def _claim_order(self, order_id: str, batch_id: str) -> bool:
        response = (
            self._table(ORDERS)
            .update({"batch_id": batch_id})
            .eq("order_id", order_id)
            .is_("batch_id", "null")
            .execute()
        )
        return bool(response.data)

    # Batches

    def _batch_row(self, batch_id: str) -> Optional[dict[str, Any]]:
        response = self._table(BATCHES).select("*").eq("id", batch_id).execute()
        rows = response.data or []
        return rows[0] if rows else None

    def _hydrate(self, row: dict[str, Any]) -> Batch:
        batch_id = str(row["id"])
        stops_response = self._table(STOPS).select("*").eq("batch_id", batch_id).execute()
        return Batch(
            batch_id=batch_id,
            zone=row.get("barangay") or "",
            capacity=float(row.get("max_weight") or 0.0),
            accumulated_weight=float(row.get("total_weight") or 0.0),
            status=BatchStatus(row.get("status") or BatchStatus.PENDING.value),
            created_at=_parse_dt(row.get("created_at")) or utcnow(),
            driver_id=row.get("driver_id"),
            order_ids=[order.order_id for order in self.orders_for_batch(batch_id)],
            stops=[_stop_from_row(stop) for stop in (stops_response.data or [])],
        )

    def _require(self, batch_id: str) -> Batch:
        row = self._batch_row(batch_id)
        if row is None:
            raise NotFound(f"Batch {batch_id} not found")
        return self._hydrate(row)

    def create_batch(self, zone: str, capacity: float, order: Order) -> Batch:
        batch_id = str(uuid.uuid4())
        self._table(BATCHES).insert(
            {
                "id": batch_id,
                "barangay": zone,
                "total_weight": float(order.weight or 0.0),
                "max_weight": float(capacity),
                "status": BatchStatus.PENDING.value,
                "driver_id": None,
                "created_at": _iso(utcnow()),
            }
        ).execute()
        if not self._claim_order(order.order_id, batch_id):
            self._table(BATCHES).delete().eq("id", batch_id).execute()
            raise ConcurrentUpdateConflict(batch_id, f"order {order.order_id} was claimed by another batch")
        return self._require(batch_id)

    def get_batch(self, batch_id: str) -> Optional[Batch]:
        row = self._batch_row(batch_id)
        return self._hydrate(row) if row else None

    def list_batches(
        self, *, status: Optional[BatchStatus] = None, zone: Optional[str] = None
    ) -> list[Batch]:
        query = self._table(BATCHES).select("*")
        if status is not None:
            query = query.eq("status", status.value)
        if zone is not None:
            query = query.eq("barangay", zone)
        response = query.execute()
        batches = [self._hydrate(row) for row in (response.data or [])]
        return sorted(batches, key=lambda b: b.created_at)

    def add_order(self, batch_id: str, order: Order, *, expected_weight: float) -> Batch:
        weight = float(order.weight or 0.0)
        batch = self._require(batch_id)
        if batch.status != BatchStatus.PENDING or batch.accumulated_weight != expected_weight:
            raise ConcurrentUpdateConflict(batch_id, "batch changed since last read")
        if expected_weight + weight > batch.capacity:
            raise CapacityExceeded(batch_id, weight, batch.capacity - expected_weight)

        new_weight = expected_weight + weight
        response = (
            self._table(BATCHES)
            .update({"total_weight": new_weight})
            .eq("id", batch_id)
            .eq("total_weight", expected_weight)
            .eq("status", BatchStatus.PENDING.value)
            .execute()
        )
        if not response.data:
            raise ConcurrentUpdateConflict(batch_id, "weight changed concurrently")

        if not self._claim_order(order.order_id, batch_id):
            (
                self._table(BATCHES)
                .update({"total_weight": expected_weight})
                .eq("id", batch_id)
                .eq("total_weight", new_weight)
                .execute()
            )
            raise ConcurrentUpdateConflict(batch_id, f"order {order.order_id} was claimed by another batch")
        return self._require(batch_id)

    def set_status(
        self,
        batch_id: str,
        *,
        expected: BatchStatus,
        new: BatchStatus,
        driver_id: Optional[str] = None,
    ) -> Batch:
        values: dict[str, Any] = {"status": new.value}
        if driver_id is not None:
            values["driver_id"] = driver_id
        response = (
            self._table(BATCHES)
            .update(values)
            .eq("id", batch_id)
            .eq("status", expected.value)
            .execute()
        )
        if not response.data:
            current = self._require(batch_id)
            raise ConcurrentUpdateConflict(
                batch_id, f"status is {current.status.value}, expected {expected.value}"
            )
        return self._require(batch_id)

    def set_weight(self, batch_id: str, *, expected_weight: float, new_weight: float) -> Batch:
        response = (
            self._table(BATCHES)
            .update({"total_weight": new_weight})
            .eq("id", batch_id)
            .eq("total_weight", expected_weight)
            .execute()
        )
        if not response.data:
            self._require(batch_id)
            raise ConcurrentUpdateConflict(batch_id, "weight changed during repair")
        return self._require(batch_id)

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
        source = self._require(source_id)
        target = self._require(target_id)
        if source.zone != target.zone:
            raise ValueError(f"Cannot merge zone {source.zone} into zone {target.zone}")
        combined = expected_source_weight + expected_target_weight
        if combined > target.capacity:
            raise CapacityExceeded(target_id, expected_source_weight, target.capacity - expected_target_weight)

        # A source filled to capacity has no headroom, so no order can land in it mid-merge.
        sealed = (
            self._table(BATCHES)
            .update({"total_weight": source.capacity})
            .eq("id", source_id)
            .eq("total_weight", expected_source_weight)
            .eq("status", BatchStatus.PENDING.value)
            .execute()
        )
        if not sealed.data:
            raise ConcurrentUpdateConflict(source_id, "weight changed before merge")

        grown = (
            self._table(BATCHES)
            .update({"total_weight": combined})
            .eq("id", target_id)
            .eq("total_weight", expected_target_weight)
            .eq("status", BatchStatus.PENDING.value)
            .execute()
        )
        if not grown.data:
            (
                self._table(BATCHES)
                .update({"total_weight": expected_source_weight})
                .eq("id", source_id)
                .eq("total_weight", source.capacity)
                .execute()
            )
            raise ConcurrentUpdateConflict(target_id, "weight changed before merge")

        self._table(ORDERS).update({"batch_id": target_id}).eq("batch_id", source_id).execute()
        self._table(STOPS).delete().eq("batch_id", source_id).execute()
        self._table(ROUTES).delete().eq("batch_id", source_id).execute()
        self._table(BATCHES).delete().eq("id", source_id).execute()
        logger.info(f"Merged batch {source_id} into {target_id} ({combined:.2f}kg)")
        return self._require(target_id)

    def delete_batch(self, batch_id: str) -> None:
        self._require(batch_id)
        self._table(ORDERS).update({"batch_id": None}).eq("batch_id", batch_id).execute()
        self._table(STOPS).delete().eq("batch_id", batch_id).execute()
        self._table(ROUTES).delete().eq("batch_id", batch_id).execute()
        self._table(BATCHES).delete().eq("id", batch_id).execute()

    # Stops and routes

    def replace_stops(self, batch_id: str, stops: Sequence[Stop]) -> Batch:
        self._require(batch_id)
        self._table(STOPS).delete().eq("batch_id", batch_id).execute()
        if stops:
            self._table(STOPS).insert([_stop_to_row(stop) for stop in stops]).execute()
        return self._require(batch_id)

    def find_stop(self, stop_id: str) -> Optional[Stop]:
        response = self._table(STOPS).select("*").eq("stop_id", stop_id).execute()
        rows = response.data or []
        return _stop_from_row(rows[0]) if rows else None

    def update_stop(
        self,
        stop_id: str,
        *,
        status: Optional[StopStatus] = None,
        completed_at: Optional[datetime] = None,
        expected: Optional[StopStatus] = None,
    ) -> Stop:
        values: dict[str, Any] = {}
        if status is not None:
            values["status"] = status.value
        if completed_at is not None:
            values["completed_at"] = _iso(completed_at)
        if values:
            query = self._table(STOPS).update(values).eq("stop_id", stop_id)
            if expected is not None:
                query = query.eq("status", expected.value)
            response = query.execute()
            if not response.data:
                self._stop_conflict(stop_id, expected)
        stop = self.find_stop(stop_id)
        if stop is None:
            raise NotFound(f"Stop {stop_id} not found")
        if not values and expected is not None and stop.status != expected:
            self._stop_conflict(stop_id, expected)
        return stop

    def _stop_conflict(self, stop_id: str, expected: Optional[StopStatus]) -> None:
        current = self.find_stop(stop_id)
        if current is None:
            raise NotFound(f"Stop {stop_id} not found")
        raise ConcurrentUpdateConflict(
            current.batch_id,
            f"stop {stop_id} is {current.status.value}, expected {expected.value if expected else 'any'}",
        )

    def apply_route(self, route: OptimizedRoute, sequences: dict[str, int]) -> None:
        self._require(route.batch_id)
        for stop_id, sequence in sequences.items():
            self._table(STOPS).update({"sequence": sequence}).eq("stop_id", stop_id).execute()
        self._table(ROUTES).upsert(
            {"batch_id": route.batch_id, "payload": _route_to_payload(route)}
        ).execute()

    def get_route(self, batch_id: str) -> Optional[OptimizedRoute]:
        response = self._table(ROUTES).select("*").eq("batch_id", batch_id).execute()
        rows = response.data or []
        if not rows:
            return None
        return _route_from_payload(rows[0]["payload"])
