"""Tests for normalized error responses."""

from qrforge.core.errors import QuotaExceededError, UnknownFeatureError


def test_validation_error_has_standard_shape(client):
    resp = client.post("/api/usage/track", json={"feature": "svgDownload"}, headers={"X-User-Id": "u_err"})
    assert resp.status_code == 400
    body = resp.json()
    rid = resp.headers.get("x-request-id")
    assert body["error"]["code"] == "invalid_feature"
    assert body["error"]["request_id"] == rid
    assert body["detail"] == body["error"]["message"]


def test_not_found_normalized(client):
    resp = client.get("/api/does-not-exist")
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "not_found"


def test_admin_permission_error_normalized(client):
    resp = client.get("/api/admin/users/u_anyone")
    assert resp.status_code == 403
    body = resp.json()
    assert body["error"]["code"] == "admin_required"
    assert body["error"]["request_id"] == resp.headers.get("x-request-id")


def test_quota_error_carries_upgrade_url():
    err = QuotaExceededError("limit reached", upgrade_url="/pricing", details={"feature": "qrCodesGenerated"})
    assert err.status_code == 403
    assert err.details == {"feature": "qrCodesGenerated", "upgrade_url": "/pricing"}


def test_unknown_feature_is_a_key_error_with_readable_message():
    err = UnknownFeatureError("Unknown feature: 'x'")
    assert isinstance(err, KeyError)
    assert str(err) == "Unknown feature: 'x'"
