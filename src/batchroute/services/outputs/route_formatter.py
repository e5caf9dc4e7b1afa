"""Serializers for computed routes."""

from __future__ import annotations

import csv
import io
from typing import Sequence

from ...models.domain import OptimizedRoute, Stop


def route_to_json(route: OptimizedRoute, stops: Sequence[Stop] = ()) -> dict:
    by_id = {stop.stop_id: stop for stop in stops}
    return {
        "batch_id": route.batch_id,
        "total_distance_km": route.total_distance_km,
        "total_duration_min": route.total_duration_min,
        "optimization_score": route.optimization_score,
        "fitness": route.fitness,
        "generations": route.generations,
        "fuel_cost_estimate": route.fuel_cost_estimate,
        "timed_out": route.timed_out,
        "computed_at": route.computed_at.isoformat(),
        "origin": {"latitude": route.origin.latitude, "longitude": route.origin.longitude},
        "stops": [
            {
                "sequence": sequence,
                "stop_id": stop_id,
                "order_id": by_id[stop_id].order_id if stop_id in by_id else None,
                "status": by_id[stop_id].status.value if stop_id in by_id else None,
            }
            for sequence, stop_id in enumerate(route.stop_ids)
        ],
    }


def route_to_csv(route: OptimizedRoute, stops: Sequence[Stop] = ()) -> str:
    by_id = {stop.stop_id: stop for stop in stops}
    buffer = io.StringIO()
    fieldnames = [
        "batch_id",
        "sequence",
        "stop_id",
        "order_id",
        "latitude",
        "longitude",
        "total_distance_km",
        "total_duration_min",
    ]
    writer = csv.DictWriter(buffer, fieldnames=fieldnames)
    writer.writeheader()
    for sequence, stop_id in enumerate(route.stop_ids):
        stop = by_id.get(stop_id)
        coordinates = stop.coordinates if stop else None
        writer.writerow(
            {
                "batch_id": route.batch_id,
                "sequence": sequence,
                "stop_id": stop_id,
                "order_id": stop.order_id if stop else "",
                "latitude": coordinates.latitude if coordinates else "",
                "longitude": coordinates.longitude if coordinates else "",
                "total_distance_km": route.total_distance_km,
                "total_duration_min": route.total_duration_min,
            }
        )
    return buffer.getvalue()
