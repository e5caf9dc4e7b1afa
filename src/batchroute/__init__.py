"""Order batching and delivery route optimization service."""

__version__ = "0.1.0"
