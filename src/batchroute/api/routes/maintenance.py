"""Maintenance endpoints: reconciliation and batch merging."""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, status

from ...errors import DispatchError
from ...schemas.tracking import MergeRequest, MergeResultModel, ReconcileResponse
from ...services.dispatch import DispatchService, get_dispatch_service
from ..errors import to_http

router = APIRouter(prefix="/maintenance", tags=["maintenance"])


@router.post("/reconcile", response_model=ReconcileResponse, status_code=status.HTTP_200_OK)
def reconcile(service: DispatchService = Depends(get_dispatch_service)) -> ReconcileResponse:
    """Run the invariant-restoring pass over every batch."""
    report = service.reconcile()
    return ReconcileResponse(
        promoted=report.promoted,
        delivered=report.delivered,
        reweighed=report.reweighed,
        removed=report.removed,
        failed=report.failed,
    )


@router.post("/merge", response_model=List[MergeResultModel], status_code=status.HTTP_200_OK)
def merge(
    payload: Optional[MergeRequest] = None,
    service: DispatchService = Depends(get_dispatch_service),
) -> List[MergeResultModel]:
    try:
        results = service.merge_batches(payload.zone if payload else None)
    except (ValueError, DispatchError) as exc:
        raise to_http(exc) from exc
    return [
        MergeResultModel(
            source_id=result.source_id,
            target_id=result.target_id,
            combined_weight_kg=result.combined_weight_kg,
            distance_km=result.distance_km,
        )
        for result in results
    ]
