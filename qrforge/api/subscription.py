"""
Subscription API routes.

- GET /api/subscription/current: tier, usage and remaining budgets of the signed-in user
- GET /api/subscription/plans: display details for every tier
"""
from typing import Any, Dict

from fastapi import APIRouter, Depends

from qrforge.core.auth import get_current_user_id
from qrforge.core.errors import NotFoundError
from qrforge.features.subscriptions.evaluation import UsageSnapshot, get_remaining_usage
from qrforge.features.subscriptions.policy import METERED_FEATURES, get_subscription_details
from qrforge.features.users.service import get_user_record
from qrforge.models.subscription import SubscriptionTier


router = APIRouter(prefix="/api/subscription", tags=["subscription"])


@router.get("/current")
def current_subscription(user_id: str = Depends(get_current_user_id)) -> Dict[str, Any]:
    record = get_user_record(user_id)
    if not record:
        raise NotFoundError(f"User {user_id} not found")

    remaining = {}
    for feature in sorted(METERED_FEATURES, key=lambda f: f.value):
        window = record.usage_windows[feature.value]
        remaining[feature.value] = get_remaining_usage(
            record.subscription_tier,
            feature,
            UsageSnapshot(daily=window.daily, monthly=window.monthly),
        ).as_dict()

    return {
        "user": record.model_dump(mode="json", by_alias=True),
        "plan": get_subscription_details(record.subscription_tier),
        "remaining": remaining,
    }


@router.get("/plans")
def list_plans() -> Dict[str, Any]:
    return {"plans": [get_subscription_details(tier) for tier in sorted(SubscriptionTier)]}
