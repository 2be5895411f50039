"""
qrforge/features/subscriptions/evaluation.py

Pure policy evaluation over the tier table.

Handles:
- Feature access (is it unlocked for this tier?)
- Numeric limits
- Remaining usage and limit checks for metered features

No I/O. Tier and feature may be passed as enums or their string values;
strings are the only way an unknown key can reach these functions.
"""

from dataclasses import dataclass
from typing import Any, Mapping, Optional, Union
import logging

from qrforge.core.errors import UnknownFeatureError, UnknownTierError, ValidationError
from qrforge.features.subscriptions.policy import (
    Cap,
    Metered,
    Permission,
    UNLIMITED,
    get_entitlement,
)
from qrforge.models.subscription import FeatureKey, SubscriptionTier, UsageKind


logger = logging.getLogger(__name__)

# Reported as remaining usage for features that are gated but not counted.
UNLIMITED_SENTINEL = 999999

TierLike = Union[SubscriptionTier, str]
FeatureLike = Union[FeatureKey, str]


@dataclass(frozen=True)
class UsageSnapshot:
    """Usage consumed so far in the current day and month."""
    daily: int = 0
    monthly: int = 0

    def __post_init__(self):
        if self.daily < 0 or self.monthly < 0:
            raise ValidationError(
                f"Usage counters cannot be negative (daily={self.daily}, monthly={self.monthly})"
            )

    @classmethod
    def coerce(cls, value: Any) -> "UsageSnapshot":
        if value is None:
            return cls()
        if isinstance(value, cls):
            return value
        if isinstance(value, Mapping):
            return cls(daily=int(value.get("daily") or 0), monthly=int(value.get("monthly") or 0))
        raise ValidationError(f"Unsupported usage value: {value!r}")


@dataclass(frozen=True)
class RemainingUsage:
    kind: UsageKind
    daily: int
    monthly: int

    @property
    def exhausted(self) -> bool:
        return self.daily <= 0 or self.monthly <= 0

    def as_dict(self) -> dict:
        return {"kind": self.kind.value, "daily": self.daily, "monthly": self.monthly}


def coerce_tier(tier: TierLike) -> SubscriptionTier:
    try:
        return SubscriptionTier(tier)
    except ValueError:
        raise UnknownTierError(f"Unknown subscription tier: {tier!r}") from None


def coerce_feature(feature: FeatureLike) -> FeatureKey:
    try:
        return FeatureKey(feature)
    except ValueError:
        raise UnknownFeatureError(f"Unknown feature: {feature!r}") from None


def _lookup(tier: TierLike, feature: FeatureLike):
    return get_entitlement(coerce_tier(tier), coerce_feature(feature))


def has_feature_access(tier: TierLike, feature: FeatureLike) -> bool:
    """Is the feature unlocked for this tier?

    Caps count as unlocked when greater than zero; metered features when both
    budgets are non-zero. Unknown tier/feature returns False (logged) so a
    typo in a feature name hides the feature instead of failing the request.
    """
    try:
        entitlement = _lookup(tier, feature)
    except (UnknownTierError, UnknownFeatureError) as exc:
        logger.warning(
            "[policy] access check on unknown key",
            extra={"tier": str(tier), "feature": str(feature), "error_code": exc.code},
        )
        return False

    if isinstance(entitlement, Permission):
        return entitlement.enabled
    if isinstance(entitlement, Cap):
        return entitlement.limit == UNLIMITED or entitlement.limit > 0
    return entitlement.daily != 0 and entitlement.monthly != 0


def get_feature_limit(tier: TierLike, feature: FeatureLike) -> int:
    """Numeric limit for a cap, daily budget for a metered feature, else 0."""
    try:
        entitlement = _lookup(tier, feature)
    except (UnknownTierError, UnknownFeatureError) as exc:
        logger.warning(
            "[policy] limit lookup on unknown key",
            extra={"tier": str(tier), "feature": str(feature), "error_code": exc.code},
        )
        return 0

    if isinstance(entitlement, Cap):
        return entitlement.limit
    if isinstance(entitlement, Metered):
        return entitlement.daily
    return 0


def _remaining(limit: int, used: int) -> int:
    return max(0, limit - used)


def get_remaining_usage(
    tier: TierLike,
    feature: FeatureLike,
    current_usage: Optional[Union[UsageSnapshot, Mapping[str, int]]] = None,
) -> RemainingUsage:
    """Remaining daily/monthly budget.

    Features that are gated but not counted (permissions, caps) report
    NOT_APPLICABLE with UNLIMITED_SENTINEL on both axes. Raises
    UnknownFeatureError / UnknownTierError on unknown keys.
    """
    entitlement = _lookup(tier, feature)
    usage = UsageSnapshot.coerce(current_usage)

    if not isinstance(entitlement, Metered):
        return RemainingUsage(UsageKind.NOT_APPLICABLE, UNLIMITED_SENTINEL, UNLIMITED_SENTINEL)

    if entitlement.unlimited:
        return RemainingUsage(UsageKind.UNLIMITED, UNLIMITED_SENTINEL, UNLIMITED_SENTINEL)

    daily = UNLIMITED_SENTINEL if entitlement.daily == UNLIMITED else _remaining(entitlement.daily, usage.daily)
    monthly = UNLIMITED_SENTINEL if entitlement.monthly == UNLIMITED else _remaining(entitlement.monthly, usage.monthly)
    return RemainingUsage(UsageKind.METERED, daily, monthly)


def has_reached_limit(
    tier: TierLike,
    feature: FeatureLike,
    current_usage: Optional[Union[UsageSnapshot, Mapping[str, int]]] = None,
) -> bool:
    """True when either the daily or the monthly budget is used up."""
    return get_remaining_usage(tier, feature, current_usage).exhausted


def is_within_usage_limit(
    tier: TierLike,
    feature: FeatureLike,
    amount: int = 1,
    current_usage: Optional[Union[UsageSnapshot, Mapping[str, int]]] = None,
) -> bool:
    """Would consuming `amount` more stay inside both remaining budgets?"""
    if amount < 1:
        raise ValidationError(f"amount must be a positive integer, got {amount}")
    remaining = get_remaining_usage(tier, feature, current_usage)
    return amount <= remaining.daily and amount <= remaining.monthly
