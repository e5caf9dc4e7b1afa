"""Driver position and stop completion schemas."""

from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class PositionUpdateRequest(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    timestamp: Optional[datetime] = None


class PositionUpdateResponse(BaseModel):
    driver_id: str
    batch_id: Optional[str] = None
    reoptimizing: bool = False


class StopCompletionRequest(BaseModel):
    outcome: Literal["delivered", "skipped"]


class ReconcileResponse(BaseModel):
    promoted: List[str]
    delivered: List[str]
    reweighed: List[str]
    removed: List[str]
    failed: List[str]


class MergeRequest(BaseModel):
    zone: Optional[str] = Field(default=None, description="Limit merging to one zone; all zones when omitted.")


class MergeResultModel(BaseModel):
    source_id: str
    target_id: str
    combined_weight_kg: float
    distance_km: float
