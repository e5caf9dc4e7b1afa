"""Order intake request/response schemas."""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field


class LineItemModel(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=0)
    unit_weight: Optional[float] = Field(default=None, ge=0, description="Kilograms per unit.")
    unit_price: float = Field(default=0.0, ge=0)


class OrderApprovedRequest(BaseModel):
    order_id: str = Field(..., min_length=1)
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    address: str = ""
    zone_hint: Optional[str] = Field(default=None, description="Structured zone field from checkout, e.g. the barangay.")
    weight: Optional[float] = Field(default=None, gt=0, description="Shipping weight in kg when already known.")
    line_items: List[LineItemModel] = Field(default_factory=list)


class OrderAssignmentResponse(BaseModel):
    order_id: str
    batch_id: str
    zone: str
    weight_kg: float
