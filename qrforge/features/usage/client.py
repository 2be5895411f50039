"""
qrforge/features/usage/client.py

Backends the usage tracker talks to.

- HttpUsageBackend: the qrforge API over httpx (what a browser/UI client uses)
- DatabaseUsageBackend: the same operations in-process (server-side callers, tests)

Both return an IncrementResult for policy/server rejections and let transport
failures propagate; the tracker turns either into a TrackingError.
"""

from dataclasses import dataclass
from typing import Any, Optional, Protocol
import logging

import httpx

from qrforge.core.config import settings
from qrforge.core.errors import AppError, QuotaExceededError
from qrforge.features.usage.service import increment_usage
from qrforge.features.users.service import get_user, get_user_record
from qrforge.models.subscription import FeatureKey
from qrforge.models.usage import UsageIncrement
from qrforge.models.user import UserRecord


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IncrementResult:
    success: bool
    message: Optional[str] = None
    code: Optional[str] = None
    upgrade_url: Optional[str] = None
    usage: Optional[UsageIncrement] = None


class UsageBackend(Protocol):
    async def fetch_user_record(self, user_id: str) -> Optional[UserRecord]:
        ...

    async def increment_usage(self, user_id: str, feature: FeatureKey, amount: int) -> IncrementResult:
        ...


def _error_fields(payload: Any) -> tuple:
    """Pull (message, code, upgrade_url) out of an API error body."""
    if not isinstance(payload, dict):
        return None, None, None
    error = payload.get("error")
    if isinstance(error, dict):
        return error.get("message") or payload.get("detail"), error.get("code"), error.get("upgrade_url")
    if isinstance(error, str):
        return error, None, None
    detail = payload.get("detail")
    return (detail if isinstance(detail, str) else None), None, None


class HttpUsageBackend:
    """Calls GET /api/subscription/current and POST /api/usage/track."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        token: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
    ):
        self.base_url = (base_url or settings.API_BASE_URL).rstrip("/")
        self.token = token
        self._client = client
        self._owns_client = client is None
        self.timeout = timeout if timeout is not None else settings.HTTP_TIMEOUT_SECONDS

    def _headers(self, user_id: str) -> dict:
        if self.token:
            return {"Authorization": f"Bearer {self.token}"}
        return {"X-User-Id": user_id}

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def fetch_user_record(self, user_id: str) -> Optional[UserRecord]:
        response = await self._get_client().get(
            f"{self.base_url}/api/subscription/current",
            headers=self._headers(user_id),
        )
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return UserRecord.model_validate(response.json()["user"])

    async def increment_usage(self, user_id: str, feature: FeatureKey, amount: int) -> IncrementResult:
        response = await self._get_client().post(
            f"{self.base_url}/api/usage/track",
            headers=self._headers(user_id),
            json={"feature": FeatureKey(feature).value, "amount": amount},
        )
        try:
            payload = response.json()
        except ValueError:
            payload = None

        if response.is_success:
            usage = None
            if isinstance(payload, dict) and payload.get("usage"):
                usage = UsageIncrement.model_validate(payload["usage"])
            return IncrementResult(success=True, usage=usage)

        message, code, upgrade_url = _error_fields(payload)
        logger.warning(
            "[usage-client] increment rejected",
            extra={"user_id": user_id, "feature": FeatureKey(feature).value, "status": response.status_code, "error_code": code},
        )
        return IncrementResult(success=False, message=message, code=code, upgrade_url=upgrade_url)


class DatabaseUsageBackend:
    """In-process backend over the users and usage services."""

    async def fetch_user_record(self, user_id: str) -> Optional[UserRecord]:
        return get_user_record(user_id)

    async def increment_usage(self, user_id: str, feature: FeatureKey, amount: int) -> IncrementResult:
        user = get_user(user_id)
        if not user:
            return IncrementResult(success=False, message=f"User {user_id} not found", code="not_found")
        try:
            usage = increment_usage(user_id, feature, amount, tier=user.subscription_tier)
        except QuotaExceededError as e:
            return IncrementResult(success=False, message=e.message, code=e.code, upgrade_url=e.upgrade_url)
        except AppError as e:
            return IncrementResult(success=False, message=e.message, code=e.code)
        return IncrementResult(success=True, usage=usage)
