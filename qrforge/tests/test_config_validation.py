"""Tests for configuration validation."""

import logging
from types import SimpleNamespace

import pytest

from qrforge.core.config import Settings, validate_config


def make_settings(**overrides):
    defaults = dict(
        ENV="development",
        CONFIG_STRICT=False,
        DATABASE_URL="sqlite:///./qrforge.db",
        AUTH_SECRET_KEY=None,
        ADMIN_KEY=None,
    )
    defaults.update(overrides)
    return SimpleNamespace(**defaults)


def test_complete_config_passes_strict():
    settings = make_settings(AUTH_SECRET_KEY="secret", ADMIN_KEY="admin")
    assert validate_config(strict=True, settings_obj=settings) is True


def test_missing_keys_fail_in_strict_mode():
    settings = make_settings(AUTH_SECRET_KEY="secret")
    with pytest.raises(RuntimeError) as exc:
        validate_config(strict=True, settings_obj=settings)
    assert "ADMIN_KEY" in str(exc.value)


def test_missing_keys_only_warn_by_default(caplog):
    settings = make_settings()
    with caplog.at_level(logging.WARNING, logger="qrforge"):
        assert validate_config(settings_obj=settings) is True
    assert any("AUTH_SECRET_KEY" in r.getMessage() for r in caplog.records)


def test_secrets_are_not_logged(caplog):
    settings = make_settings(AUTH_SECRET_KEY="super-secret-value")
    with caplog.at_level(logging.WARNING, logger="qrforge"):
        validate_config(settings_obj=settings)
    assert all("super-secret-value" not in r.getMessage() for r in caplog.records)


def test_settings_read_environment(monkeypatch):
    monkeypatch.setenv("PRICING_URL", "https://qrforge.example/pricing")
    monkeypatch.setenv("HTTP_TIMEOUT_SECONDS", "2.5")

    settings = Settings(_env_file=None)

    assert settings.PRICING_URL == "https://qrforge.example/pricing"
    assert settings.HTTP_TIMEOUT_SECONDS == 2.5
