"""Route group exports."""

from . import batches, drivers, health, maintenance, orders, stops

__all__ = ["batches", "drivers", "health", "maintenance", "orders", "stops"]
