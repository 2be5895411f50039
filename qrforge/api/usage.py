"""
Usage API routes.

- POST /api/usage/track: atomically add usage to a metered feature
"""
from fastapi import APIRouter, Depends

from qrforge.core.auth import get_current_user_id
from qrforge.core.errors import NotFoundError
from qrforge.core.logging import log_event
from qrforge.features.usage.service import increment_usage, metered_feature
from qrforge.features.users.service import get_user
from qrforge.models.usage import TrackUsageRequest, TrackUsageResponse


router = APIRouter(prefix="/api/usage", tags=["usage"])


@router.post("/track", response_model=TrackUsageResponse)
def track_usage(request: TrackUsageRequest, user_id: str = Depends(get_current_user_id)):
    """
    Record usage of a metered feature for the signed-in user.

    The increment only lands if it keeps the user inside both the daily and
    the monthly budget of their current tier.

    Errors:
        400: feature is unknown or not metered, or amount < 1
        401: not authenticated
        403: quota_exceeded (body carries upgrade_url)
    """
    feature = metered_feature(request.feature)
    user = get_user(user_id)
    if not user:
        raise NotFoundError(f"User {user_id} not found")

    usage = increment_usage(user_id, feature, request.amount, tier=user.subscription_tier)
    log_event(
        "info",
        "usage.tracked",
        user_id=user_id,
        feature=feature.value,
        event_type="usage.tracked",
        extra={"amount": request.amount, "tier": user.subscription_tier.value},
    )
    return TrackUsageResponse(success=True, usage=usage)
