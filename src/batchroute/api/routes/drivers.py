"""Driver-facing endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from ...errors import DispatchError
from ...models.events import DriverPositionUpdate
from ...models.domain import utcnow
from ...schemas.batches import BatchModel, batch_to_model
from ...schemas.tracking import PositionUpdateRequest, PositionUpdateResponse
from ...services.dispatch import DispatchService, get_dispatch_service
from ..errors import to_http

router = APIRouter(prefix="/drivers", tags=["drivers"])


@router.get("/{driver_id}/active-batch", response_model=BatchModel, status_code=status.HTTP_200_OK)
def active_batch(driver_id: str, service: DispatchService = Depends(get_dispatch_service)) -> BatchModel:
    batch = service.active_batch_for_driver(driver_id)
    if batch is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Driver {driver_id} has no active batch",
        )
    return batch_to_model(batch)


@router.post("/{driver_id}/position", response_model=PositionUpdateResponse, status_code=status.HTTP_200_OK)
def position_update(
    driver_id: str,
    payload: PositionUpdateRequest,
    service: DispatchService = Depends(get_dispatch_service),
) -> PositionUpdateResponse:
    update = DriverPositionUpdate(
        driver_id=driver_id,
        latitude=payload.latitude,
        longitude=payload.longitude,
        timestamp=payload.timestamp or utcnow(),
    )
    try:
        reoptimizing = service.tracker.handle_position(update)
    except DispatchError as exc:
        raise to_http(exc) from exc
    batch = service.active_batch_for_driver(driver_id)
    return PositionUpdateResponse(
        driver_id=driver_id,
        batch_id=batch.batch_id if batch else None,
        reoptimizing=reoptimizing,
    )
