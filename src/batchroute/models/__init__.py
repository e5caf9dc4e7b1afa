"""Domain and event models."""

from .domain import (
    Batch,
    BatchStatus,
    Coordinates,
    Depot,
    Driver,
    LineItem,
    OptimizedRoute,
    Order,
    Stop,
    StopStatus,
)

__all__ = [
    "Batch",
    "BatchStatus",
    "Coordinates",
    "Depot",
    "Driver",
    "LineItem",
    "OptimizedRoute",
    "Order",
    "Stop",
    "StopStatus",
]
