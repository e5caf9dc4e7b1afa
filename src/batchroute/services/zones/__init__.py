"""Zone resolution services."""

from .resolver import ZoneResolver, strip_indicators

__all__ = ["ZoneResolver", "strip_indicators"]
