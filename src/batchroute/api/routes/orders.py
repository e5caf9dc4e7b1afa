"""Order intake endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from ...errors import DispatchError
from ...models.domain import Coordinates, LineItem
from ...models.events import OrderApproved
from ...schemas.orders import OrderApprovedRequest, OrderAssignmentResponse
from ...services.dispatch import DispatchService, get_dispatch_service
from ..errors import to_http

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post("/approved", response_model=OrderAssignmentResponse, status_code=status.HTTP_200_OK)
def order_approved(
    payload: OrderApprovedRequest,
    service: DispatchService = Depends(get_dispatch_service),
) -> OrderAssignmentResponse:
    """Place a freshly approved order into a batch of its zone."""
    if (payload.latitude is None) != (payload.longitude is None):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="latitude and longitude must be provided together",
        )
    coordinates = (
        Coordinates(payload.latitude, payload.longitude) if payload.latitude is not None else None
    )
    event = OrderApproved(
        order_id=payload.order_id,
        coordinates=coordinates,
        line_items=[
            LineItem(
                product_id=item.product_id,
                quantity=item.quantity,
                unit_weight=item.unit_weight,
                unit_price=item.unit_price,
            )
            for item in payload.line_items
        ],
        zone_hint=payload.zone_hint,
        address=payload.address,
        weight=payload.weight,
    )
    try:
        order = service.approve_order(event)
    except (ValueError, DispatchError) as exc:
        raise to_http(exc) from exc
    return OrderAssignmentResponse(
        order_id=order.order_id,
        batch_id=order.batch_id or "",
        zone=order.zone or "",
        weight_kg=float(order.weight or 0.0),
    )
