"""Stop sequencing for a batch on straight-line distances."""

from __future__ import annotations

import dataclasses
import logging
import threading
from typing import Sequence

from ...config import settings
from ...errors import OptimizationTimeout
from ...models.domain import Coordinates, OptimizedRoute, Stop
from ..geospatial import haversine_matrix_km
from .genetic import GeneticParameters, GeneticRouteSearch, route_cost

logger = logging.getLogger(__name__)


def improvement_score(naive_cost: float, best_cost: float) -> float:
    """Percentage saved versus the input order, clamped to [0, 100]."""

    if naive_cost <= 0:
        return 0.0
    return max(0.0, min(100.0, (naive_cost - best_cost) / naive_cost * 100.0))


class RouteOptimizer:
    """Orders a batch's stops with a genetic search.

    Stops without coordinates cannot be placed on the map, so they are kept
    out of the search and appended after the optimized stops in input order.
    """

    def __init__(
        self,
        params: GeneticParameters | None = None,
        *,
        return_to_depot: bool | None = None,
        road_distance_factor: float | None = None,
        average_speed_kmh: float | None = None,
        service_minutes_per_stop: float | None = None,
        fuel_km_per_liter: float | None = None,
        fuel_price_per_liter: float | None = None,
    ) -> None:
        self.search = GeneticRouteSearch(params)
        self.return_to_depot = settings.return_to_depot if return_to_depot is None else return_to_depot
        self.road_distance_factor = road_distance_factor or settings.road_distance_factor
        self.average_speed_kmh = average_speed_kmh or settings.average_speed_kmh
        self.service_minutes_per_stop = (
            settings.service_minutes_per_stop if service_minutes_per_stop is None else service_minutes_per_stop
        )
        self.fuel_km_per_liter = fuel_km_per_liter or settings.fuel_km_per_liter
        self.fuel_price_per_liter = (
            settings.fuel_price_per_liter if fuel_price_per_liter is None else fuel_price_per_liter
        )

    def optimize(
        self,
        stops: Sequence[Stop],
        depot: Coordinates,
        *,
        batch_id: str | None = None,
        cancel_event: threading.Event | None = None,
    ) -> OptimizedRoute:
        batch_id = batch_id or (stops[0].batch_id if stops else "")
        located = [stop for stop in stops if stop.coordinates is not None]
        unlocated = [stop for stop in stops if stop.coordinates is None]
        if unlocated:
            logger.info(f"Batch {batch_id}: {len(unlocated)} stop(s) without coordinates appended to route")

        full = haversine_matrix_km([depot] + [stop.coordinates for stop in located])
        origin_distances = full[0, 1:]
        matrix = full[1:, 1:]

        naive = list(range(len(located)))
        naive_cost = route_cost(naive, matrix, origin_distances, self.return_to_depot)
        timed_out = False
        generations = 0
        try:
            result = self.search.search(
                matrix,
                origin_distances,
                return_to_origin=self.return_to_depot,
                seeds=[naive],
                cancel_event=cancel_event,
            )
            best, generations = result.order, result.generations
        except OptimizationTimeout as exc:
            logger.warning(f"Batch {batch_id}: {exc}; using best route found")
            best, generations, timed_out = exc.best_order or naive, exc.generations, True

        best_cost = route_cost(best, matrix, origin_distances, self.return_to_depot)
        if naive_cost < best_cost:
            best, best_cost = naive, naive_cost

        driving_km = best_cost * self.road_distance_factor
        duration_min = driving_km / self.average_speed_kmh * 60.0 + self.service_minutes_per_stop * len(stops)
        route = OptimizedRoute(
            batch_id=batch_id,
            stop_ids=[located[index].stop_id for index in best] + [stop.stop_id for stop in unlocated],
            total_distance_km=round(driving_km, 3),
            total_duration_min=round(duration_min, 1),
            optimization_score=round(improvement_score(naive_cost, best_cost), 2),
            origin=depot,
            fitness=1.0 / (1.0 + best_cost),
            generations=generations,
            fuel_cost_estimate=round(driving_km / self.fuel_km_per_liter * self.fuel_price_per_liter, 2),
            timed_out=timed_out,
        )
        logger.info(
            f"Batch {batch_id}: {len(stops)} stops, {route.total_distance_km:.2f}km, "
            f"score {route.optimization_score:.1f}% after {generations} generations"
        )
        return route

    def reoptimize(
        self,
        stops: Sequence[Stop],
        position: Coordinates,
        *,
        batch_id: str | None = None,
        cancel_event: threading.Event | None = None,
    ) -> OptimizedRoute:
        """Re-plan the open stops from ``position``.

        Delivered and skipped stops keep their place at the front of the
        route in their existing order; only the rest is searched.
        """

        batch_id = batch_id or (stops[0].batch_id if stops else "")
        ordered = sorted(stops, key=lambda stop: stop.sequence)
        completed = [stop for stop in ordered if stop.status.is_terminal]
        remaining = [stop for stop in ordered if not stop.status.is_terminal]
        route = self.optimize(remaining, position, batch_id=batch_id, cancel_event=cancel_event)
        return dataclasses.replace(route, stop_ids=[stop.stop_id for stop in completed] + route.stop_ids)


def route_sequences(route: OptimizedRoute) -> dict[str, int]:
    return {stop_id: index for index, stop_id in enumerate(route.stop_ids)}
