"""Delivery tracking."""

from .tracker import DeliveryTracker

__all__ = ["DeliveryTracker"]
