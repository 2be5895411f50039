"""
qrforge/features/usage/service.py

Usage counter store.

Handles:
- Counter provisioning (zeroed rows per metered feature)
- Usage reads (cumulative totals, current daily/monthly windows)
- Atomic conditional increments (the server-side quota guard)
- Admin resets

Daily windows start at 00:00 UTC, monthly windows on the 1st at 00:00 UTC.
A window whose start is behind the current one counts as zero and is rolled
over by the next increment.
"""

from datetime import datetime, timezone
from typing import Dict, Optional, Union
import logging

from sqlalchemy import select, update, and_

from qrforge.core.config import settings
from qrforge.core.database import get_db_session, insert_if_absent, usage_counters
from qrforge.core.errors import QuotaExceededError, ValidationError
from qrforge.features.subscriptions.evaluation import coerce_feature, coerce_tier
from qrforge.features.subscriptions.policy import METERED_FEATURES, UNLIMITED, get_entitlement
from qrforge.models.subscription import FeatureKey, SubscriptionTier
from qrforge.models.usage import UsageIncrement
from qrforge.models.user import FeaturesUsage, UsageWindow


logger = logging.getLogger(__name__)


def _normalize_now(now: Optional[datetime]) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; everything stored is UTC
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def day_window_start(now: datetime) -> datetime:
    now = _normalize_now(now)
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def month_window_start(now: datetime) -> datetime:
    return day_window_start(now).replace(day=1)


def metered_feature(feature: Union[FeatureKey, str]) -> FeatureKey:
    """Coerce and require a metered feature."""
    key = coerce_feature(feature)
    if key not in METERED_FEATURES:
        raise ValidationError(f"Feature {key.value} is not usage-metered", code="invalid_feature")
    return key


def _window_from_row(row, now: datetime) -> UsageWindow:
    day_start = day_window_start(now)
    month_start = month_window_start(now)
    daily_start = _as_utc(row.daily_window_start)
    monthly_start = _as_utc(row.monthly_window_start)
    return UsageWindow(
        daily=row.daily_count if daily_start >= day_start else 0,
        monthly=row.monthly_count if monthly_start >= month_start else 0,
        daily_window_start=max(daily_start, day_start),
        monthly_window_start=max(monthly_start, month_start),
    )


def _insert_missing_counters(session, user_id: str, now: datetime) -> int:
    created = 0
    for feature in sorted(METERED_FEATURES, key=lambda f: f.value):
        if insert_if_absent(
            session,
            usage_counters,
            ("user_id", "feature"),
            user_id=user_id,
            feature=feature.value,
            total_count=0,
            daily_count=0,
            daily_window_start=day_window_start(now),
            monthly_count=0,
            monthly_window_start=month_window_start(now),
            updated_at=now,
        ):
            created += 1
    return created


def provision_counters(user_id: str, now: Optional[datetime] = None) -> int:
    """Create zeroed counters for every metered feature (idempotent).

    Returns the number of counters created.
    """
    normalized_now = _normalize_now(now)
    with get_db_session() as session:
        created = _insert_missing_counters(session, user_id, normalized_now)
    if created:
        logger.info("[usage] counters provisioned", extra={"user_id": user_id, "counters_created": created})
    return created


def get_features_usage(user_id: str) -> FeaturesUsage:
    """Cumulative totals per metered feature (zero when no counter exists)."""
    with get_db_session() as session:
        rows = session.execute(
            select(usage_counters.c.feature, usage_counters.c.total_count)
            .where(usage_counters.c.user_id == user_id)
        ).all()
    counts = {}
    for row in rows:
        try:
            counts[FeatureKey(row.feature)] = row.total_count
        except ValueError:
            logger.warning("[usage] ignoring counter for unknown feature", extra={"user_id": user_id, "feature": row.feature})
    return FeaturesUsage.from_counts(counts)


def get_usage_windows(user_id: str, now: Optional[datetime] = None) -> Dict[str, UsageWindow]:
    """Current daily/monthly counts per metered feature, keyed by feature value.

    Read-only: stale windows are reported as zero without being written back.
    """
    normalized_now = _normalize_now(now)
    with get_db_session() as session:
        rows = session.execute(
            select(usage_counters).where(usage_counters.c.user_id == user_id)
        ).all()
    windows = {feature.value: UsageWindow() for feature in METERED_FEATURES}
    for row in rows:
        if row.feature in windows:
            windows[row.feature] = _window_from_row(row, normalized_now)
    return windows


def _limit_clause(column, amount: int, limit: int):
    if limit == UNLIMITED:
        return None
    return column + amount <= limit


def increment_usage(
    user_id: str,
    feature: Union[FeatureKey, str],
    amount: int = 1,
    *,
    tier: Union[SubscriptionTier, str],
    now: Optional[datetime] = None,
) -> UsageIncrement:
    """Add `amount` to a metered counter iff the result stays within the tier's budgets.

    Runs in a single transaction: window rollover, then one conditional
    UPDATE guarded on both the daily and the monthly budget. Concurrent
    callers cannot push a counter past its limit.

    Raises:
        ValidationError: amount < 1 or feature not metered
        QuotaExceededError: the increment would exceed a budget
    """
    if amount < 1:
        raise ValidationError(f"amount must be a positive integer, got {amount}")
    key = metered_feature(feature)
    tier_key = coerce_tier(tier)
    entitlement = get_entitlement(tier_key, key)
    normalized_now = _normalize_now(now)
    day_start = day_window_start(normalized_now)
    month_start = month_window_start(normalized_now)

    row_filter = and_(
        usage_counters.c.user_id == user_id,
        usage_counters.c.feature == key.value,
    )

    with get_db_session() as session:
        _insert_missing_counters(session, user_id, normalized_now)

        session.execute(
            update(usage_counters)
            .where(row_filter)
            .where(usage_counters.c.daily_window_start < day_start)
            .values(daily_count=0, daily_window_start=day_start)
        )
        session.execute(
            update(usage_counters)
            .where(row_filter)
            .where(usage_counters.c.monthly_window_start < month_start)
            .values(monthly_count=0, monthly_window_start=month_start)
        )

        stmt = (
            update(usage_counters)
            .where(row_filter)
            .values(
                total_count=usage_counters.c.total_count + amount,
                daily_count=usage_counters.c.daily_count + amount,
                monthly_count=usage_counters.c.monthly_count + amount,
                updated_at=normalized_now,
            )
        )
        for clause in (
            _limit_clause(usage_counters.c.daily_count, amount, entitlement.daily),
            _limit_clause(usage_counters.c.monthly_count, amount, entitlement.monthly),
        ):
            if clause is not None:
                stmt = stmt.where(clause)

        result = session.execute(stmt)
        if result.rowcount == 0:
            logger.warning(
                "[usage] increment rejected",
                extra={
                    "user_id": user_id,
                    "tier": tier_key.value,
                    "feature": key.value,
                    "amount": amount,
                    "daily_limit": entitlement.daily,
                    "monthly_limit": entitlement.monthly,
                    "metric": "usage.rejected.count",
                },
            )
            raise QuotaExceededError(
                f"You've reached your {key.value} limit for your current plan",
                upgrade_url=settings.PRICING_URL,
                details={"feature": key.value, "tier": tier_key.value},
            )

        row = session.execute(select(usage_counters).where(row_filter)).one()

    window = _window_from_row(row, normalized_now)
    logger.info(
        "[usage] incremented",
        extra={
            "user_id": user_id,
            "tier": tier_key.value,
            "feature": key.value,
            "amount": amount,
            "total": row.total_count,
            "daily": window.daily,
            "monthly": window.monthly,
        },
    )
    return UsageIncrement(
        user_id=user_id,
        feature=key.value,
        amount=amount,
        total=row.total_count,
        window=window,
    )


def reset_usage(
    user_id: str,
    feature: Optional[Union[FeatureKey, str]] = None,
    now: Optional[datetime] = None,
) -> int:
    """Zero the daily/monthly window counts for one feature or all of them.

    Cumulative totals are kept. Returns the number of counters reset.
    """
    normalized_now = _normalize_now(now)
    stmt = update(usage_counters).where(usage_counters.c.user_id == user_id)
    if feature is not None:
        stmt = stmt.where(usage_counters.c.feature == metered_feature(feature).value)

    with get_db_session() as session:
        result = session.execute(
            stmt.values(
                daily_count=0,
                daily_window_start=day_window_start(normalized_now),
                monthly_count=0,
                monthly_window_start=month_window_start(normalized_now),
                updated_at=normalized_now,
            )
        )
        reset = result.rowcount

    logger.info(
        "[usage] counters reset",
        extra={"user_id": user_id, "feature": getattr(feature, "value", feature), "reset": reset},
    )
    return reset
