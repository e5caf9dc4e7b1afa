"""Input and output events exchanged with the surrounding platform."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from .domain import BatchStatus, Coordinates, LineItem, OptimizedRoute, StopStatus, utcnow


@dataclass(slots=True)
class OrderApproved:
    order_id: str
    coordinates: Optional[Coordinates]
    line_items: List[LineItem] = field(default_factory=list)
    zone_hint: Optional[str] = None
    address: str = ""
    weight: Optional[float] = None


@dataclass(slots=True)
class DriverPositionUpdate:
    driver_id: str
    latitude: float
    longitude: float
    timestamp: datetime = field(default_factory=utcnow)


@dataclass(slots=True)
class StopCompleted:
    stop_id: str
    outcome: StopStatus


@dataclass(slots=True)
class AssignDriver:
    batch_id: str
    driver_id: str


@dataclass(slots=True)
class StartDelivery:
    batch_id: str


@dataclass(slots=True)
class BatchStatusChanged:
    batch_id: str
    old_status: BatchStatus
    new_status: BatchStatus
    occurred_at: datetime = field(default_factory=utcnow)


@dataclass(slots=True)
class RouteOptimized:
    batch_id: str
    route: OptimizedRoute
