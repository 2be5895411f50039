"""
qrforge/models/usage.py

Request/response models for usage tracking.
"""

from typing import Optional
from pydantic import BaseModel, ConfigDict, Field

from qrforge.models.subscription import SubscriptionTier
from qrforge.models.user import UsageWindow


class TrackUsageRequest(BaseModel):
    feature: str
    amount: int = Field(1, ge=1)


class UsageIncrement(BaseModel):
    """Result of a successful server-side increment."""
    model_config = ConfigDict(frozen=True)

    user_id: str
    feature: str
    amount: int
    total: int
    window: UsageWindow


class TrackUsageResponse(BaseModel):
    success: bool = True
    usage: Optional[UsageIncrement] = None


class ResetUsageRequest(BaseModel):
    user_id: str
    feature: Optional[str] = None


class SetTierRequest(BaseModel):
    tier: SubscriptionTier
