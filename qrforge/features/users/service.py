"""
User domain service.
- get_or_create_user(user_id)
- get_user(user_id)
- get_user_record(user_id): tier + usage as read by the usage core
- set_subscription_tier(user_id, tier): written by billing/admin, never by usage tracking
"""

from datetime import datetime, timezone
from typing import Optional, Union
import logging

from sqlalchemy import select, update

from qrforge.core.database import get_db_session, insert_if_absent, users as app_users
from qrforge.core.errors import NotFoundError
from qrforge.features.subscriptions.evaluation import coerce_tier
from qrforge.features.usage.service import get_features_usage, get_usage_windows, provision_counters
from qrforge.models.subscription import SubscriptionTier
from qrforge.models.user import User, UserRecord


logger = logging.getLogger(__name__)


def normalize_display_name(user_id: str, display_name: Optional[str]) -> str:
    return User.normalized_display_name(user_id, display_name)


def _tier_from_row(row) -> SubscriptionTier:
    try:
        return SubscriptionTier(row.subscription_tier)
    except ValueError:
        logger.warning(
            "[users] unknown stored tier, treating as free",
            extra={"user_id": row.user_id, "stored_tier": row.subscription_tier},
        )
        return SubscriptionTier.FREE


def get_user(user_id: str) -> Optional[User]:
    with get_db_session() as session:
        row = session.execute(select(app_users).where(app_users.c.user_id == user_id)).first()
        if not row:
            return None
        display = row.display_name or normalize_display_name(row.user_id, None)
        return User(
            user_id=row.user_id,
            created_at=row.created_at,
            email=row.email,
            display_name=display,
            role=row.role,
            subscription_tier=_tier_from_row(row),
        )


def get_or_create_user(
    user_id: str,
    email: Optional[str] = None,
    display_name: Optional[str] = None,
) -> User:
    """Return the user, provisioning a free-tier row with zeroed counters if new."""
    existing = get_user(user_id)
    if existing:
        return existing

    now = datetime.now(timezone.utc)
    display = normalize_display_name(user_id, display_name)
    with get_db_session() as session:
        created = insert_if_absent(
            session,
            app_users,
            ("user_id",),
            user_id=user_id,
            email=email,
            display_name=display,
            role="user",
            subscription_tier=SubscriptionTier.FREE.value,
            created_at=now,
            updated_at=now,
        )

    provision_counters(user_id, now=now)
    if not created:
        # A concurrent first request inserted the row between the read and the insert
        return get_user(user_id)

    logger.info("[users] provisioned", extra={"user_id": user_id})

    return User(
        user_id=user_id,
        created_at=now,
        email=email,
        display_name=display,
        subscription_tier=SubscriptionTier.FREE,
    )


def get_user_record(user_id: str, now: Optional[datetime] = None) -> Optional[UserRecord]:
    """Tier, cumulative usage and current windows, or None if the user is unknown."""
    user = get_user(user_id)
    if not user:
        return None
    return UserRecord(
        user_id=user.user_id,
        email=user.email,
        display_name=user.display_name,
        role=user.role,
        subscription_tier=user.subscription_tier,
        features_usage=get_features_usage(user_id),
        usage_windows=get_usage_windows(user_id, now=now),
    )


def set_subscription_tier(user_id: str, tier: Union[SubscriptionTier, str]) -> User:
    """Record a tier change from checkout, cancellation or an admin edit.

    Raises:
        UnknownTierError: tier is not free/pro/business
        NotFoundError: user does not exist
    """
    tier_key = coerce_tier(tier)
    now = datetime.now(timezone.utc)
    with get_db_session() as session:
        result = session.execute(
            update(app_users)
            .where(app_users.c.user_id == user_id)
            .values(subscription_tier=tier_key.value, updated_at=now)
        )
        if result.rowcount == 0:
            raise NotFoundError(f"User {user_id} not found")

    logger.info("[users] subscription tier changed", extra={"user_id": user_id, "tier": tier_key.value})
    return get_user(user_id)


def set_role(user_id: str, role: str) -> User:
    if role not in ("user", "admin"):
        raise ValueError(f"Unsupported role: {role}")
    with get_db_session() as session:
        result = session.execute(
            update(app_users).where(app_users.c.user_id == user_id).values(role=role)
        )
        if result.rowcount == 0:
            raise NotFoundError(f"User {user_id} not found")
    return get_user(user_id)
