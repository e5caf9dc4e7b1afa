"""Batch, stop and route schemas."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from ..models.domain import Batch, OptimizedRoute, Stop


class StopModel(BaseModel):
    stop_id: str
    order_id: str
    sequence: int
    status: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    completed_at: Optional[datetime] = None


class BatchModel(BaseModel):
    batch_id: str
    zone: str
    status: str
    capacity_kg: float
    accumulated_weight_kg: float
    driver_id: Optional[str] = None
    created_at: datetime
    order_ids: List[str]
    stops: List[StopModel]


class RouteModel(BaseModel):
    batch_id: str
    stop_ids: List[str]
    total_distance_km: float
    total_duration_min: float
    optimization_score: float
    fitness: float
    generations: int
    fuel_cost_estimate: float
    timed_out: bool
    origin_latitude: float
    origin_longitude: float
    computed_at: datetime


class AssignDriverRequest(BaseModel):
    driver_id: str = Field(..., min_length=1)


class StartDeliveryRequest(BaseModel):
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)


class ReoptimizeRequest(BaseModel):
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)


def stop_to_model(stop: Stop) -> StopModel:
    return StopModel(
        stop_id=stop.stop_id,
        order_id=stop.order_id,
        sequence=stop.sequence,
        status=stop.status.value,
        latitude=stop.coordinates.latitude if stop.coordinates else None,
        longitude=stop.coordinates.longitude if stop.coordinates else None,
        completed_at=stop.completed_at,
    )


def batch_to_model(batch: Batch) -> BatchModel:
    return BatchModel(
        batch_id=batch.batch_id,
        zone=batch.zone,
        status=batch.status.value,
        capacity_kg=batch.capacity,
        accumulated_weight_kg=batch.accumulated_weight,
        driver_id=batch.driver_id,
        created_at=batch.created_at,
        order_ids=list(batch.order_ids),
        stops=[stop_to_model(stop) for stop in batch.ordered_stops()],
    )


def route_to_model(route: OptimizedRoute) -> RouteModel:
    return RouteModel(
        batch_id=route.batch_id,
        stop_ids=list(route.stop_ids),
        total_distance_km=route.total_distance_km,
        total_duration_min=route.total_duration_min,
        optimization_score=route.optimization_score,
        fitness=route.fitness,
        generations=route.generations,
        fuel_cost_estimate=route.fuel_cost_estimate,
        timed_out=route.timed_out,
        origin_latitude=route.origin.latitude,
        origin_longitude=route.origin.longitude,
        computed_at=route.computed_at,
    )
