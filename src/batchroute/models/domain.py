"""Domain models for orders, batches, stops and routes."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BatchStatus(str, Enum):
    PENDING = "pending"
    READY = "ready"
    ASSIGNED = "assigned"
    DELIVERING = "delivering"
    DELIVERED = "delivered"


class StopStatus(str, Enum):
    PENDING = "pending"
    EN_ROUTE = "en_route"
    ARRIVED = "arrived"
    DELIVERED = "delivered"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in (StopStatus.DELIVERED, StopStatus.SKIPPED)


@dataclass(slots=True, frozen=True)
class Coordinates:
    latitude: float
    longitude: float


@dataclass(slots=True)
class LineItem:
    product_id: str
    quantity: int
    unit_weight: Optional[float] = None
    unit_price: float = 0.0


@dataclass(slots=True)
class Order:
    """An approved order handed over by checkout.

    ``zone`` and ``weight`` are attached at approval time; ``batch_id`` is a
    lookup-only reference back to the owning batch.
    """

    order_id: str
    line_items: List[LineItem] = field(default_factory=list)
    coordinates: Optional[Coordinates] = None
    address: str = ""
    zone_hint: Optional[str] = None
    zone: Optional[str] = None
    weight: Optional[float] = None
    batch_id: Optional[str] = None
    delivery_status: str = "pending"
    approved_at: datetime = field(default_factory=utcnow)


@dataclass(slots=True)
class Stop:
    stop_id: str
    batch_id: str
    order_id: str
    coordinates: Optional[Coordinates]
    sequence: int
    status: StopStatus = StopStatus.PENDING
    completed_at: Optional[datetime] = None


@dataclass(slots=True)
class Batch:
    """A zone-scoped, weight-bounded group of orders for one driver run."""

    batch_id: str
    zone: str
    capacity: float
    accumulated_weight: float = 0.0
    status: BatchStatus = BatchStatus.PENDING
    created_at: datetime = field(default_factory=utcnow)
    driver_id: Optional[str] = None
    order_ids: List[str] = field(default_factory=list)
    stops: List[Stop] = field(default_factory=list)

    @property
    def headroom(self) -> float:
        return self.capacity - self.accumulated_weight

    def ordered_stops(self) -> list[Stop]:
        return sorted(self.stops, key=lambda stop: stop.sequence)


@dataclass(slots=True)
class OptimizedRoute:
    """Immutable result of one route search; replaced wholesale on re-optimization."""

    batch_id: str
    stop_ids: List[str]
    total_distance_km: float
    total_duration_min: float
    optimization_score: float
    origin: Coordinates
    fitness: float = 0.0
    generations: int = 0
    fuel_cost_estimate: float = 0.0
    timed_out: bool = False
    computed_at: datetime = field(default_factory=utcnow)


@dataclass(slots=True)
class Driver:
    driver_id: str
    position: Optional[Coordinates] = None
    updated_at: Optional[datetime] = None


@dataclass(slots=True)
class Depot:
    """The route starting location."""

    name: str
    latitude: float
    longitude: float

    @property
    def coordinates(self) -> Coordinates:
        return Coordinates(self.latitude, self.longitude)
