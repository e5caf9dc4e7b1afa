"""Batch formation and lifecycle services."""

from .assigner import BatchAssigner, best_fit
from .lifecycle import ALLOWED_TRANSITIONS, BatchLifecycle, ReconcileReport, build_stops
from .merging import BatchMerger, MergeResult
from .weight import WeightEstimator

__all__ = [
    "ALLOWED_TRANSITIONS",
    "BatchAssigner",
    "BatchLifecycle",
    "BatchMerger",
    "MergeResult",
    "ReconcileReport",
    "WeightEstimator",
    "best_fit",
    "build_stops",
]
