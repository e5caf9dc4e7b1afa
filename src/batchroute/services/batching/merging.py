"""Consolidation of under-filled pending batches within a zone."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List

from ...config import settings
from ...errors import CapacityExceeded, ConcurrentUpdateConflict, NotFound
from ...models.domain import Batch, BatchStatus, Coordinates
from ...persistence.store import BatchStore
from ..geospatial import centroid, distance_km
from .lifecycle import BatchLifecycle

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class MergeResult:
    source_id: str
    target_id: str
    combined_weight_kg: float
    distance_km: float


class BatchMerger:
    """Folds small pending batches into a nearby batch of the same zone.

    Not part of the default assignment flow; run it as a maintenance step.
    """

    def __init__(
        self,
        store: BatchStore,
        lifecycle: BatchLifecycle,
        *,
        max_distance_km: float | None = None,
    ) -> None:
        self.store = store
        self.lifecycle = lifecycle
        self.max_distance_km = (
            max_distance_km if max_distance_km is not None else settings.merge_max_distance_km
        )

    def _centroid(self, batch: Batch) -> Coordinates | None:
        points = [
            order.coordinates
            for order in self.store.orders_for_batch(batch.batch_id)
            if order.coordinates is not None
        ]
        return centroid(points)

    def merge_zone(self, zone: str) -> List[MergeResult]:
        pending = self.store.list_batches(status=BatchStatus.PENDING, zone=zone)
        centroids = {batch.batch_id: self._centroid(batch) for batch in pending}
        consumed: set[str] = set()
        results: list[MergeResult] = []

        # smallest batches are the ones worth folding away
        for source in sorted(pending, key=lambda b: (b.accumulated_weight, b.created_at)):
            if source.batch_id in consumed:
                continue
            source_point = centroids.get(source.batch_id)
            if source_point is None:
                continue

            best: tuple[float, float, Batch] | None = None
            for target in pending:
                if target.batch_id == source.batch_id or target.batch_id in consumed:
                    continue
                target_point = centroids.get(target.batch_id)
                if target_point is None:
                    continue
                gap = distance_km(source_point, target_point)
                if gap > self.max_distance_km:
                    continue
                remaining = target.capacity - target.accumulated_weight - source.accumulated_weight
                if remaining < 0:
                    continue
                rank = (remaining, gap, target)
                if best is None or rank[:2] < best[:2]:
                    best = rank
            if best is None:
                continue

            _, gap, target = best
            try:
                merged = self.store.merge_batches(
                    source.batch_id,
                    target.batch_id,
                    expected_source_weight=source.accumulated_weight,
                    expected_target_weight=target.accumulated_weight,
                )
            except (CapacityExceeded, ConcurrentUpdateConflict, NotFound) as exc:
                logger.info(f"Skipped merging {source.batch_id} into {target.batch_id}: {exc}")
                continue

            consumed.add(source.batch_id)
            # the target's weight changed, so drop it from this pass
            consumed.add(target.batch_id)
            results.append(
                MergeResult(
                    source_id=source.batch_id,
                    target_id=merged.batch_id,
                    combined_weight_kg=merged.accumulated_weight,
                    distance_km=gap,
                )
            )
            logger.info(f"Merged batch {source.batch_id} into {merged.batch_id} ({gap:.2f}km apart)")
            self.lifecycle.promote_if_ready(merged.batch_id)
        return results

    def merge_all(self) -> List[MergeResult]:
        zones = sorted({batch.zone for batch in self.store.list_batches(status=BatchStatus.PENDING)})
        results: list[MergeResult] = []
        for zone in zones:
            results.extend(self.merge_zone(zone))
        return results
