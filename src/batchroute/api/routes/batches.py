"""Batch lifecycle and route endpoints."""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ...errors import DispatchError
from ...models.domain import BatchStatus, Coordinates
from ...schemas.batches import (
    AssignDriverRequest,
    BatchModel,
    ReoptimizeRequest,
    RouteModel,
    StartDeliveryRequest,
    batch_to_model,
    route_to_model,
)
from ...services.dispatch import DispatchService, get_dispatch_service
from ..errors import to_http

router = APIRouter(prefix="/batches", tags=["batches"])


def _coordinates(latitude: Optional[float], longitude: Optional[float]) -> Coordinates | None:
    if latitude is None and longitude is None:
        return None
    if latitude is None or longitude is None:
        raise ValueError("latitude and longitude must be provided together")
    return Coordinates(latitude, longitude)


@router.get("", response_model=List[BatchModel], status_code=status.HTTP_200_OK)
def list_batches(
    status_filter: Optional[BatchStatus] = Query(default=None, alias="status"),
    zone: Optional[str] = Query(default=None),
    service: DispatchService = Depends(get_dispatch_service),
) -> List[BatchModel]:
    return [batch_to_model(batch) for batch in service.list_batches(status_filter, zone)]


@router.get("/{batch_id}", response_model=BatchModel, status_code=status.HTTP_200_OK)
def get_batch(batch_id: str, service: DispatchService = Depends(get_dispatch_service)) -> BatchModel:
    try:
        return batch_to_model(service.get_batch(batch_id))
    except DispatchError as exc:
        raise to_http(exc) from exc


@router.post("/{batch_id}/assign-driver", response_model=BatchModel, status_code=status.HTTP_200_OK)
def assign_driver(
    batch_id: str,
    payload: AssignDriverRequest,
    service: DispatchService = Depends(get_dispatch_service),
) -> BatchModel:
    try:
        return batch_to_model(service.lifecycle.assign_driver(batch_id, payload.driver_id))
    except (ValueError, DispatchError) as exc:
        raise to_http(exc) from exc


@router.post("/{batch_id}/start", response_model=BatchModel, status_code=status.HTTP_200_OK)
def start_delivery(
    batch_id: str,
    payload: Optional[StartDeliveryRequest] = None,
    service: DispatchService = Depends(get_dispatch_service),
) -> BatchModel:
    """Driver starts the run; the initial route is computed in the background."""
    try:
        origin = _coordinates(payload.latitude, payload.longitude) if payload else None
        return batch_to_model(service.start_delivery(batch_id, origin))
    except (ValueError, DispatchError) as exc:
        raise to_http(exc) from exc


@router.post("/{batch_id}/reoptimize", response_model=RouteModel, status_code=status.HTTP_200_OK)
def reoptimize(
    batch_id: str,
    payload: Optional[ReoptimizeRequest] = None,
    service: DispatchService = Depends(get_dispatch_service),
) -> RouteModel:
    try:
        position = _coordinates(payload.latitude, payload.longitude) if payload else None
        route = service.reoptimize(batch_id, position)
    except (ValueError, DispatchError) as exc:
        raise to_http(exc) from exc
    if route is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Route search for batch {batch_id} was superseded by a newer request",
        )
    return route_to_model(route)


@router.get("/{batch_id}/route", response_model=RouteModel, status_code=status.HTTP_200_OK)
def get_route(batch_id: str, service: DispatchService = Depends(get_dispatch_service)) -> RouteModel:
    route = service.get_route(batch_id)
    if route is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No route computed for batch {batch_id}",
        )
    return route_to_model(route)
