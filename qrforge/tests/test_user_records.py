"""
Tests for user provisioning and the user record the usage core reads.
"""
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone

import pytest
from sqlalchemy import func, select, update

from qrforge.core.database import get_db_session, usage_counters, users
from qrforge.core.errors import NotFoundError, UnknownTierError
from qrforge.features.usage.service import increment_usage
from qrforge.features.users import service as users_service
from qrforge.features.users.service import (
    get_or_create_user,
    get_user,
    get_user_record,
    set_role,
    set_subscription_tier,
)
from qrforge.models.subscription import FeatureKey, SubscriptionTier
from qrforge.models.user import UserRecord


def test_new_user_starts_on_free_tier_with_zero_usage():
    user = get_or_create_user("u_new", email="new@example.com")

    assert user.subscription_tier == SubscriptionTier.FREE
    record = get_user_record("u_new")
    assert record.email == "new@example.com"
    assert record.features_usage.qr_codes_generated == 0
    assert set(record.usage_windows) == {
        "qrCodesGenerated",
        "barcodesGenerated",
        "bulkGenerations",
        "aiCustomizations",
    }


def test_get_or_create_is_idempotent():
    first = get_or_create_user("u_same", display_name="Sam")
    second = get_or_create_user("u_same", display_name="Someone else")

    assert first.display_name == second.display_name == "Sam"


def test_display_name_falls_back_to_handle():
    user = get_or_create_user("u_anon", display_name="   ")

    assert user.display_name.startswith("@u_")


def test_unknown_user_has_no_record():
    assert get_user("u_missing") is None
    assert get_user_record("u_missing") is None


def test_record_reflects_usage():
    get_or_create_user("u_usage")
    now = datetime.now(timezone.utc)
    increment_usage("u_usage", FeatureKey.QR_CODES_GENERATED, 3, tier=SubscriptionTier.FREE, now=now)

    record = get_user_record("u_usage", now=now)

    assert record.features_usage.get(FeatureKey.QR_CODES_GENERATED) == 3
    assert record.usage_windows["qrCodesGenerated"].daily == 3


def test_record_serializes_with_camel_case_keys():
    get_or_create_user("u_json")

    payload = get_user_record("u_json").model_dump(mode="json", by_alias=True)

    assert payload["subscriptionTier"] == "free"
    assert payload["featuresUsage"]["qrCodesGenerated"] == 0
    assert UserRecord.model_validate(payload).subscription_tier == SubscriptionTier.FREE


class TestSetSubscriptionTier:
    def test_upgrade(self):
        get_or_create_user("u_upgrade")

        user = set_subscription_tier("u_upgrade", "business")

        assert user.subscription_tier == SubscriptionTier.BUSINESS
        assert get_user_record("u_upgrade").subscription_tier == SubscriptionTier.BUSINESS

    def test_unknown_user(self):
        with pytest.raises(NotFoundError):
            set_subscription_tier("u_ghost", SubscriptionTier.PRO)

    def test_unknown_tier(self):
        get_or_create_user("u_enterprise")

        with pytest.raises(UnknownTierError):
            set_subscription_tier("u_enterprise", "enterprise")


def test_unrecognized_stored_tier_reads_as_free():
    get_or_create_user("u_legacy")
    with get_db_session() as session:
        session.execute(update(users).where(users.c.user_id == "u_legacy").values(subscription_tier="premium"))

    assert get_user("u_legacy").subscription_tier == SubscriptionTier.FREE


def test_set_role():
    get_or_create_user("u_admin")

    assert set_role("u_admin", "admin").is_admin is True
    with pytest.raises(ValueError):
        set_role("u_admin", "owner")


class TestFirstRequestRace:
    def _count(self, table, user_id):
        with get_db_session() as session:
            return session.execute(
                select(func.count()).select_from(table).where(table.c.user_id == user_id)
            ).scalar_one()

    def test_row_created_between_read_and_insert_is_returned(self, monkeypatch):
        get_or_create_user("u_late", display_name="First")
        real_get_user = users_service.get_user
        calls = []

        def stale_first_read(user_id):
            calls.append(user_id)
            # the first lookup misses as if the other request had not committed yet
            return None if len(calls) == 1 else real_get_user(user_id)

        monkeypatch.setattr(users_service, "get_user", stale_first_read)

        user = get_or_create_user("u_late", display_name="Second")

        assert user.display_name == "First"
        assert self._count(users, "u_late") == 1
        assert self._count(usage_counters, "u_late") == 4

    def test_parallel_first_requests_all_succeed(self, file_db):
        with ThreadPoolExecutor(max_workers=8) as pool:
            created = list(pool.map(lambda _: get_or_create_user("u_burst", email="burst@example.com"), range(8)))

        assert {u.user_id for u in created} == {"u_burst"}
        assert all(u.subscription_tier == SubscriptionTier.FREE for u in created)
        assert self._count(users, "u_burst") == 1
        assert self._count(usage_counters, "u_burst") == 4
