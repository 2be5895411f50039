"""
Auth utilities for the qrforge API.

The identity provider issues HS256 session JWTs carrying the user id in `sub`.
Falls back to the X-User-Id header for tests/dev when enabled.
"""
from fastapi import Header, Request
from typing import Optional
import jwt
import logging

from qrforge.core.config import settings
from qrforge.core.errors import AuthenticationError

logger = logging.getLogger(__name__)


def verify_session_token(token: str, secret: Optional[str] = None) -> str:
    """
    Verify a session JWT and extract user_id.

    Args:
        token: JWT from Authorization header (Bearer {token})
        secret: Override for AUTH_SECRET_KEY

    Returns:
        user_id from the token's 'sub' claim

    Raises:
        AuthenticationError: Invalid, expired, or unverifiable token
    """
    key = secret or settings.AUTH_SECRET_KEY
    if not key:
        raise AuthenticationError("Session tokens are not accepted: AUTH_SECRET_KEY is not configured")

    try:
        payload = jwt.decode(
            token,
            key,
            algorithms=["HS256"],
            options={"verify_signature": True, "verify_exp": True},
        )
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token expired", code="token_expired")
    except jwt.InvalidTokenError as e:
        logger.debug(f"Invalid token: {e}")
        raise AuthenticationError("Invalid token", code="invalid_token")

    user_id = payload.get("sub")
    if not user_id:
        raise AuthenticationError("No 'sub' claim in token", code="invalid_token")
    return user_id


def resolve_user_id(request: Request, x_user_id: Optional[str] = None) -> Optional[str]:
    """User id from Bearer JWT, else X-User-Id (if allowed), else None."""
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return verify_session_token(auth_header[7:])
    if x_user_id and settings.AUTH_ALLOW_USER_ID_HEADER:
        return x_user_id
    return None


async def get_current_user_id(
    request: Request,
    x_user_id: Optional[str] = Header(None, description="Test/dev user ID"),
) -> str:
    """
    Extract current user ID from request context and make sure the user row exists.

    Priority:
    1. Session JWT from Authorization header
    2. X-User-Id header (when AUTH_ALLOW_USER_ID_HEADER)
    3. 401 not_authenticated
    """
    user_id = resolve_user_id(request, x_user_id)
    if not user_id:
        raise AuthenticationError("Missing Authorization (Bearer JWT) or X-User-Id header")

    from qrforge.features.users.service import get_or_create_user
    get_or_create_user(user_id)

    request.state.user_id = user_id
    return user_id
