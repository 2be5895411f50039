"""
Admin API routes.

- POST /api/admin/reset-usage: zero a user's window counters (one feature or all)
- PUT  /api/admin/users/{user_id}/subscription: change a user's tier
- GET  /api/admin/users/{user_id}: user record
"""
import logging

from fastapi import APIRouter, Depends

from qrforge.core.admin_auth import AdminActor, require_admin
from qrforge.core.errors import NotFoundError
from qrforge.features.usage.service import reset_usage
from qrforge.features.users.service import get_user, get_user_record, set_subscription_tier
from qrforge.models.usage import ResetUsageRequest, SetTierRequest


logger = logging.getLogger("qrforge")

router = APIRouter(prefix="/api/admin", tags=["admin"])


@router.post("/reset-usage")
def reset_user_usage(request: ResetUsageRequest, actor: AdminActor = Depends(require_admin)):
    if not get_user(request.user_id):
        raise NotFoundError(f"User {request.user_id} not found")

    reset = reset_usage(request.user_id, request.feature)
    logger.info(
        "admin.reset_usage",
        extra={"actor_id": actor.actor_id, "user_id": request.user_id, "feature": request.feature, "reset": reset},
    )
    message = (
        f"Usage for {request.feature} reset successfully"
        if request.feature
        else "All usage stats reset successfully"
    )
    return {"success": True, "reset": reset, "message": message}


@router.put("/users/{user_id}/subscription")
def update_subscription_tier(user_id: str, request: SetTierRequest, actor: AdminActor = Depends(require_admin)):
    user = set_subscription_tier(user_id, request.tier)
    logger.info(
        "admin.set_tier",
        extra={"actor_id": actor.actor_id, "user_id": user_id, "tier": request.tier.value},
    )
    return {"success": True, "user_id": user.user_id, "subscription_tier": user.subscription_tier.value}


@router.get("/users/{user_id}")
def get_user_detail(user_id: str, actor: AdminActor = Depends(require_admin)):
    record = get_user_record(user_id)
    if not record:
        raise NotFoundError(f"User {user_id} not found")
    return {"user": record.model_dump(mode="json", by_alias=True)}
