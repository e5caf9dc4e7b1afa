"""Error taxonomy for batch formation, lifecycle and routing."""

from __future__ import annotations


class DispatchError(Exception):
    """Base class for every error raised by the dispatch core."""


class NotFound(DispatchError):
    """A batch, order, stop or route lookup returned nothing."""


class ZoneUnresolved(DispatchError):
    """No zone rule matched an address. Callers fall back to the sentinel zone."""


class CapacityExceeded(DispatchError):
    """The order no longer fits the batch headroom. Retry against another batch."""

    def __init__(self, batch_id: str, weight: float, headroom: float):
        super().__init__(f"Order weight {weight:.2f}kg exceeds headroom {headroom:.2f}kg of batch {batch_id}")
        self.batch_id = batch_id
        self.weight = weight
        self.headroom = headroom


class ConcurrentUpdateConflict(DispatchError):
    """A compare-and-swap on a batch row lost the race. Re-read and retry."""

    def __init__(self, batch_id: str, detail: str = "batch changed concurrently"):
        super().__init__(f"Batch {batch_id}: {detail}")
        self.batch_id = batch_id


class InvalidTransition(DispatchError):
    """A lifecycle change outside the allowed graph. State stays unchanged."""

    def __init__(self, batch_id: str, current: str, requested: str):
        super().__init__(f"Batch {batch_id}: transition {current} -> {requested} is not allowed")
        self.batch_id = batch_id
        self.current = current
        self.requested = requested


class OptimizationTimeout(DispatchError):
    """The route search hit its time budget. Carries the best route found so far."""

    def __init__(self, message: str, best_order: list[int] | None = None, generations: int = 0):
        super().__init__(message)
        self.best_order = best_order or []
        self.generations = generations


class OptimizationCancelled(DispatchError):
    """A newer route request superseded this search. Partial results are discarded."""
