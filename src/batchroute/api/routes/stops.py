"""Stop completion endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from ...errors import DispatchError
from ...models.domain import StopStatus
from ...models.events import StopCompleted
from ...schemas.batches import StopModel, stop_to_model
from ...schemas.tracking import StopCompletionRequest
from ...services.dispatch import DispatchService, get_dispatch_service
from ..errors import to_http

router = APIRouter(prefix="/stops", tags=["stops"])


@router.post("/{stop_id}/complete", response_model=StopModel, status_code=status.HTTP_200_OK)
def complete_stop(
    stop_id: str,
    payload: StopCompletionRequest,
    service: DispatchService = Depends(get_dispatch_service),
) -> StopModel:
    try:
        stop = service.tracker.handle_stop_completed(
            StopCompleted(stop_id=stop_id, outcome=StopStatus(payload.outcome))
        )
    except (ValueError, DispatchError) as exc:
        raise to_http(exc) from exc
    return stop_to_model(stop)
