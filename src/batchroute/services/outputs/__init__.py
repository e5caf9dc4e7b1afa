"""Output serializers."""

from .route_formatter import route_to_csv, route_to_json

__all__ = ["route_to_csv", "route_to_json"]
