"""
qrforge/features/usage/tracker.py

Usage tracker: the policy functions bound to one signed-in user.

Handles:
- Loading tier + usage once (refresh), falling back to free/zero on failure
- Local feature and quota checks against the cached usage
- track_usage: local pre-check, then one remote increment

The cache is not updated after a successful increment. Until the next
refresh(), back-to-back calls are checked against the same snapshot, so the
local check is only a shortcut for obviously blocked actions; the server's
conditional increment is what enforces the quota.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union
import logging

from qrforge.core.config import settings
from qrforge.core.errors import UnknownFeatureError
from qrforge.features.subscriptions.evaluation import (
    RemainingUsage,
    UsageSnapshot,
    coerce_feature,
    get_remaining_usage as evaluate_remaining,
    has_feature_access,
    is_within_usage_limit as evaluate_within,
)
from qrforge.features.subscriptions.policy import is_metered
from qrforge.features.usage.client import UsageBackend
from qrforge.models.subscription import FeatureKey, SubscriptionTier
from qrforge.models.user import FeaturesUsage, UserRecord


logger = logging.getLogger(__name__)


class TrackingErrorKind(str, Enum):
    NOT_AUTHENTICATED = "not_authenticated"
    UNKNOWN_FEATURE = "unknown_feature"
    INVALID_AMOUNT = "invalid_amount"
    QUOTA_EXCEEDED = "quota_exceeded"
    REMOTE_TRACKING_FAILED = "remote_tracking_failed"
    POLICY_READ_FAILURE = "policy_read_failure"


@dataclass(frozen=True)
class TrackingError:
    kind: TrackingErrorKind
    message: str
    code: Optional[str] = None  # server error code, when the server sent one
    upgrade_url: Optional[str] = None

    @property
    def requires_upgrade(self) -> bool:
        return self.kind == TrackingErrorKind.QUOTA_EXCEEDED or self.code == "quota_exceeded"


@dataclass(frozen=True)
class SessionUser:
    """The signed-in user as the identity provider reports it."""
    user_id: str
    email: Optional[str] = None
    display_name: Optional[str] = None


def _quota_message(feature: FeatureKey) -> str:
    return f"You've reached your {feature.value} limit for your current plan"


class UsageTracker:
    def __init__(self, user: Optional[SessionUser], backend: UsageBackend):
        self.user = user
        self.backend = backend
        self.record: UserRecord = self._default_record()
        self.loading = False
        self.is_tracking = False
        self.error: Optional[TrackingError] = None

    def _default_record(self) -> UserRecord:
        if not self.user:
            return UserRecord(user_id="")
        return UserRecord.default_for(self.user.user_id, self.user.email, self.user.display_name)

    @property
    def subscription_tier(self) -> SubscriptionTier:
        return self.record.subscription_tier

    @property
    def features_usage(self) -> FeaturesUsage:
        return self.record.features_usage

    async def refresh(self) -> UserRecord:
        """Reload tier and usage. Missing record or read failure -> free tier, zero usage."""
        self.loading = True
        try:
            if not self.user:
                self.record = self._default_record()
                return self.record
            try:
                record = await self.backend.fetch_user_record(self.user.user_id)
            except Exception as exc:
                logger.warning(
                    "[tracker] user record read failed, using free tier defaults",
                    exc_info=True,
                    extra={"user_id": self.user.user_id},
                )
                self.record = self._default_record()
                self.error = TrackingError(
                    TrackingErrorKind.POLICY_READ_FAILURE,
                    f"Could not fetch user data, using default settings ({exc.__class__.__name__})",
                )
                return self.record

            if record is None:
                logger.info("[tracker] no user record, using free tier defaults", extra={"user_id": self.user.user_id})
                record = self._default_record()
            self.record = record
            return self.record
        finally:
            self.loading = False

    def _usage_for(self, feature: FeatureKey) -> UsageSnapshot:
        windows = self.record.usage_windows
        if windows and feature.value in windows:
            window = windows[feature.value]
            return UsageSnapshot(daily=window.daily, monthly=window.monthly)
        total = self.record.features_usage.get(feature)
        return UsageSnapshot(daily=total, monthly=total)

    def _known(self, feature: Union[FeatureKey, str]) -> Optional[FeatureKey]:
        try:
            return coerce_feature(feature)
        except UnknownFeatureError:
            logger.warning("[tracker] unknown feature", extra={"feature": str(feature)})
            return None

    def remaining(self, feature: Union[FeatureKey, str]) -> RemainingUsage:
        """Full remaining-usage result for the cached usage. Raises on unknown feature."""
        key = coerce_feature(feature)
        return evaluate_remaining(self.subscription_tier, key, self._usage_for(key))

    def can_use_feature(self, feature: Union[FeatureKey, str]) -> bool:
        key = self._known(feature)
        if key is None:
            return False
        if not is_metered(key):
            return has_feature_access(self.subscription_tier, key)
        return not self.remaining(key).exhausted

    def get_remaining_usage(self, feature: Union[FeatureKey, str]) -> int:
        """Daily remaining count for a metered feature; 0 for anything else."""
        key = self._known(feature)
        if key is None or not is_metered(key):
            return 0
        return self.remaining(key).daily

    def has_reached_limit(self, feature: Union[FeatureKey, str]) -> bool:
        key = self._known(feature)
        if key is None:
            return True
        if not is_metered(key):
            return not has_feature_access(self.subscription_tier, key)
        return self.remaining(key).exhausted

    def is_within_usage_limit(self, feature: Union[FeatureKey, str], amount: int = 1) -> bool:
        key = self._known(feature)
        if key is None or amount < 1:
            return False
        if not is_metered(key):
            return has_feature_access(self.subscription_tier, key)
        return evaluate_within(self.subscription_tier, key, amount, self._usage_for(key))

    def _fail(self, error: TrackingError) -> bool:
        self.error = error
        logger.info(
            "[tracker] track_usage refused",
            extra={
                "user_id": getattr(self.user, "user_id", None),
                "error_kind": error.kind.value,
                "error_code": error.code,
            },
        )
        return False

    async def track_usage(self, feature: Union[FeatureKey, str], amount: int = 1) -> bool:
        """Record `amount` uses of a metered feature. Never raises.

        Returns True only when the remote increment succeeded; otherwise sets
        `error` and returns False.
        """
        if not self.user:
            return self._fail(TrackingError(TrackingErrorKind.NOT_AUTHENTICATED, "User not authenticated"))

        key = self._known(feature)
        if key is None:
            return self._fail(TrackingError(TrackingErrorKind.UNKNOWN_FEATURE, f"Unknown feature: {feature}"))
        if not is_metered(key):
            return self._fail(
                TrackingError(TrackingErrorKind.UNKNOWN_FEATURE, f"Feature {key.value} is not usage-metered")
            )

        if amount < 1:
            return self._fail(TrackingError(TrackingErrorKind.INVALID_AMOUNT, f"Invalid amount: {amount}"))

        if not self.is_within_usage_limit(key, amount):
            return self._fail(
                TrackingError(
                    TrackingErrorKind.QUOTA_EXCEEDED,
                    _quota_message(key),
                    upgrade_url=settings.PRICING_URL,
                )
            )

        self.is_tracking = True
        self.error = None
        try:
            result = await self.backend.increment_usage(self.user.user_id, key, amount)
        except Exception:
            logger.warning(
                "[tracker] increment request failed",
                exc_info=True,
                extra={"user_id": self.user.user_id, "feature": key.value},
            )
            return self._fail(
                TrackingError(
                    TrackingErrorKind.REMOTE_TRACKING_FAILED,
                    "An error occurred while tracking usage",
                )
            )
        finally:
            self.is_tracking = False

        if not result.success:
            return self._fail(
                TrackingError(
                    TrackingErrorKind.REMOTE_TRACKING_FAILED,
                    result.message or "Failed to track usage",
                    code=result.code,
                    upgrade_url=result.upgrade_url,
                )
            )

        logger.info(
            "[tracker] usage tracked",
            extra={"user_id": self.user.user_id, "feature": key.value, "amount": amount},
        )
        return True
