"""
Admin authentication.

Accepted credentials:
- X-Admin-Key: shared secret (ADMIN_KEY / ADMIN_API_KEY)
- Session JWT or X-User-Id of a user whose role is "admin"
"""
import os
import hashlib
import hmac
from dataclasses import dataclass
from typing import Literal, Optional
from fastapi import Request

from qrforge.core.auth import resolve_user_id
from qrforge.core.config import settings
from qrforge.core.errors import PermissionError


@dataclass
class AdminActor:
    """Represents an authenticated admin actor."""
    actor_type: Literal["user", "admin_key"]
    actor_id: str  # user ID or "key:<hash>"
    actor_email: Optional[str] = None


def get_admin_api_key() -> Optional[str]:
    """Prefer ADMIN_API_KEY env var; fall back to settings.ADMIN_KEY."""
    env_key = os.getenv("ADMIN_API_KEY")
    if env_key:
        return env_key
    return settings.ADMIN_KEY


def verify_admin_key(request: Request) -> Optional[AdminActor]:
    expected_key = get_admin_api_key()
    if not expected_key:
        return None

    header_key = request.headers.get("X-Admin-Key", "").strip()
    if not header_key or not hmac.compare_digest(header_key, expected_key):
        return None

    key_hash = hashlib.sha256(header_key.encode()).hexdigest()[:16]
    return AdminActor(actor_type="admin_key", actor_id=f"key:{key_hash}")


def verify_admin_user(request: Request) -> Optional[AdminActor]:
    user_id = resolve_user_id(request, request.headers.get("X-User-Id"))
    if not user_id:
        return None

    from qrforge.features.users.service import get_user
    user = get_user(user_id)
    if not user or not user.is_admin:
        return None
    return AdminActor(actor_type="user", actor_id=user.user_id, actor_email=user.email)


async def require_admin(request: Request) -> AdminActor:
    """FastAPI dependency: 403 unless the caller is an admin."""
    actor = verify_admin_key(request) or verify_admin_user(request)
    if not actor:
        raise PermissionError("Admin access required", code="admin_required")
    request.state.admin_actor = actor
    return actor
