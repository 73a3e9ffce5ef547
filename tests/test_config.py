"""Tests for config loading."""

import pytest
from pydantic import ValidationError

from waydroid_api.config import VERSION, Settings


def test_defaults_match_installer_layout(monkeypatch):
    for name in ("API_TOKEN_FILE", "WEBHOOKS_FILE", "RATE_LIMIT_CONFIG_FILE", "PORT"):
        monkeypatch.delenv(name, raising=False)
    cfg = Settings(_env_file=None)
    assert cfg.PORT == 8080
    assert cfg.API_TOKEN_FILE == "/etc/waydroid-api/token"
    assert cfg.WEBHOOKS_FILE == "/etc/waydroid-api/webhooks.json"
    assert cfg.RATE_LIMIT_CONFIG_FILE == "/etc/waydroid-api/rate-limits.json"
    assert cfg.MAX_BODY_BYTES == 10_240


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("PORT", "9090")
    monkeypatch.setenv("WEBHOOK_TIMEOUT_SECONDS", "2.5")
    monkeypatch.setenv("DEBUG", "true")
    cfg = Settings(_env_file=None)
    assert cfg.PORT == 9090
    assert cfg.WEBHOOK_TIMEOUT_SECONDS == 2.5
    assert cfg.DEBUG is True


def test_rejects_non_positive_concurrency(monkeypatch):
    monkeypatch.setenv("WEBHOOK_MAX_CONCURRENCY", "0")
    with pytest.raises(ValidationError):
        Settings(_env_file=None)


def test_version_string():
    assert VERSION == "3.0.0"
