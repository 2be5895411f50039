"""
API tests for usage tracking, subscription reads and admin routes.
"""
from datetime import datetime, timedelta, timezone

import jwt
import pytest

from qrforge.core.config import settings
from qrforge.features.users.service import get_or_create_user, get_user, set_role


def _track(client, user_id="u_api", **body):
    body.setdefault("feature", "qrCodesGenerated")
    return client.post("/api/usage/track", json=body, headers={"X-User-Id": user_id})


class TestTrackUsage:
    def test_first_call_provisions_user_and_counts(self, client):
        response = _track(client)

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["usage"]["total"] == 1
        assert data["usage"]["window"]["daily"] == 1
        assert get_user("u_api") is not None

    def test_amount_is_applied(self, client):
        response = _track(client, feature="barcodesGenerated", amount=3)

        assert response.json()["usage"]["window"]["monthly"] == 3

    def test_quota_exceeded_returns_403_with_upgrade_url(self, client):
        assert _track(client, amount=5).status_code == 200

        response = _track(client)

        assert response.status_code == 403
        error = response.json()["error"]
        assert error["code"] == "quota_exceeded"
        assert error["upgrade_url"] == "/pricing"
        assert error["feature"] == "qrCodesGenerated"
        assert error["message"] == "You've reached your qrCodesGenerated limit for your current plan"
        assert error["request_id"]

    def test_unknown_feature_is_400(self, client):
        response = _track(client, feature="qrCodez")

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "unknown_feature"

    def test_permission_feature_cannot_be_tracked(self, client):
        response = _track(client, feature="svgDownload")

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "invalid_feature"

    def test_non_positive_amount_is_rejected(self, client):
        response = _track(client, amount=0)

        assert response.status_code == 422

    def test_requires_authentication(self, client):
        response = client.post("/api/usage/track", json={"feature": "qrCodesGenerated"})

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "not_authenticated"

    def test_accepts_session_jwt(self, client, monkeypatch):
        monkeypatch.setattr(settings, "AUTH_SECRET_KEY", "test-secret")
        token = jwt.encode(
            {"sub": "u_jwt", "exp": datetime.now(timezone.utc) + timedelta(minutes=5)},
            "test-secret",
            algorithm="HS256",
        )

        response = client.post(
            "/api/usage/track",
            json={"feature": "qrCodesGenerated"},
            headers={"Authorization": f"Bearer {token}"},
        )

        assert response.status_code == 200
        assert response.json()["usage"]["user_id"] == "u_jwt"

    def test_rejects_expired_jwt(self, client, monkeypatch):
        monkeypatch.setattr(settings, "AUTH_SECRET_KEY", "test-secret")
        token = jwt.encode(
            {"sub": "u_jwt", "exp": datetime.now(timezone.utc) - timedelta(minutes=5)},
            "test-secret",
            algorithm="HS256",
        )

        response = client.post(
            "/api/usage/track",
            json={"feature": "qrCodesGenerated"},
            headers={"Authorization": f"Bearer {token}"},
        )

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "token_expired"

    def test_rejects_forged_jwt(self, client, monkeypatch):
        monkeypatch.setattr(settings, "AUTH_SECRET_KEY", "test-secret")
        token = jwt.encode({"sub": "u_jwt"}, "another-secret", algorithm="HS256")

        response = client.post(
            "/api/usage/track",
            json={"feature": "qrCodesGenerated"},
            headers={"Authorization": f"Bearer {token}"},
        )

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "invalid_token"

    def test_request_id_is_echoed(self, client):
        response = client.post(
            "/api/usage/track",
            json={"feature": "qrCodesGenerated"},
            headers={"X-User-Id": "u_rid", "x-request-id": "req-123"},
        )

        assert response.headers["x-request-id"] == "req-123"


class TestSubscriptionRoutes:
    def test_current_subscription(self, client):
        _track(client, user_id="u_current", amount=2)

        response = client.get("/api/subscription/current", headers={"X-User-Id": "u_current"})

        assert response.status_code == 200
        data = response.json()
        assert data["user"]["subscriptionTier"] == "free"
        assert data["user"]["featuresUsage"]["qrCodesGenerated"] == 2
        assert data["plan"]["name"] == "Free"
        assert data["remaining"]["qrCodesGenerated"] == {"kind": "metered", "daily": 3, "monthly": 48}
        assert data["remaining"]["aiCustomizations"] == {"kind": "metered", "daily": 0, "monthly": 0}

    def test_current_requires_authentication(self, client):
        assert client.get("/api/subscription/current").status_code == 401

    def test_plans_are_listed_in_tier_order(self, client):
        response = client.get("/api/subscription/plans")

        assert response.status_code == 200
        plans = response.json()["plans"]
        assert [p["tier"] for p in plans] == ["free", "pro", "business"]
        assert [p["price"] for p in plans] == ["0", "9.99", "29.99"]


class TestAdminRoutes:
    def test_reset_usage_with_admin_key(self, client, admin_key):
        _track(client, user_id="u_reset", amount=5)
        assert _track(client, user_id="u_reset").status_code == 403

        response = client.post(
            "/api/admin/reset-usage",
            json={"user_id": "u_reset"},
            headers={"X-Admin-Key": admin_key},
        )

        assert response.status_code == 200
        assert response.json()["message"] == "All usage stats reset successfully"
        assert _track(client, user_id="u_reset").status_code == 200

    def test_reset_single_feature(self, client, admin_key):
        _track(client, user_id="u_reset_one", amount=5)

        response = client.post(
            "/api/admin/reset-usage",
            json={"user_id": "u_reset_one", "feature": "qrCodesGenerated"},
            headers={"X-Admin-Key": admin_key},
        )

        assert response.json() == {
            "success": True,
            "reset": 1,
            "message": "Usage for qrCodesGenerated reset successfully",
        }

    def test_reset_rejects_non_metered_feature(self, client, admin_key):
        get_or_create_user("u_reset_bad")

        response = client.post(
            "/api/admin/reset-usage",
            json={"user_id": "u_reset_bad", "feature": "maxQRCodes"},
            headers={"X-Admin-Key": admin_key},
        )

        assert response.status_code == 400

    def test_reset_unknown_user_is_404(self, client, admin_key):
        response = client.post(
            "/api/admin/reset-usage",
            json={"user_id": "u_ghost"},
            headers={"X-Admin-Key": admin_key},
        )

        assert response.status_code == 404

    def test_requires_admin(self, client, admin_key):
        get_or_create_user("u_regular")

        response = client.post(
            "/api/admin/reset-usage",
            json={"user_id": "u_regular"},
            headers={"X-User-Id": "u_regular"},
        )

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "admin_required"

    def test_wrong_admin_key_is_rejected(self, client, admin_key):
        get_or_create_user("u_target")

        response = client.post(
            "/api/admin/reset-usage",
            json={"user_id": "u_target"},
            headers={"X-Admin-Key": "guess"},
        )

        assert response.status_code == 403

    def test_admin_role_user_is_accepted(self, client):
        get_or_create_user("u_root")
        set_role("u_root", "admin")
        get_or_create_user("u_target")

        response = client.get("/api/admin/users/u_target", headers={"X-User-Id": "u_root"})

        assert response.status_code == 200
        assert response.json()["user"]["user_id"] == "u_target"

    def test_change_subscription_tier(self, client, admin_key):
        _track(client, user_id="u_upgrade", amount=5)

        response = client.put(
            "/api/admin/users/u_upgrade/subscription",
            json={"tier": "pro"},
            headers={"X-Admin-Key": admin_key},
        )

        assert response.status_code == 200
        assert response.json()["subscription_tier"] == "pro"
        # pro daily budget is 50; the five already used still count
        assert _track(client, user_id="u_upgrade", amount=45).status_code == 200
        assert _track(client, user_id="u_upgrade").status_code == 403

    def test_change_to_unknown_tier_is_rejected(self, client, admin_key):
        get_or_create_user("u_tier")

        response = client.put(
            "/api/admin/users/u_tier/subscription",
            json={"tier": "enterprise"},
            headers={"X-Admin-Key": admin_key},
        )

        assert response.status_code == 422

    def test_change_tier_for_unknown_user_is_404(self, client, admin_key):
        response = client.put(
            "/api/admin/users/u_ghost/subscription",
            json={"tier": "pro"},
            headers={"X-Admin-Key": admin_key},
        )

        assert response.status_code == 404


class TestHealth:
    def test_healthz(self, client):
        assert client.get("/healthz").json() == {"status": "ok"}

    def test_readyz(self, client):
        assert client.get("/readyz").status_code == 200

    def test_health_db_with_fixed_time(self, client):
        response = client.get("/api/health/db", params={"now": "2025-01-01T00:00:00+00:00"})

        data = response.json()
        assert data["ok"] is True
        assert data["computed_at"] == "2025-01-01T00:00:00+00:00"
        assert sorted(data["db"]["tables_present"]) == ["app_users", "usage_counters"]
