"""Settings loading, environment overrides and the cached accessor."""

from __future__ import annotations

from pathlib import Path

import pytest

from RequestRelay.errors import ConfigurationError, ErrorCode
from RequestRelay.settings import (
    DEFAULT_MAX_BYTES,
    DEFAULT_TIMEOUT_MS,
    DEFAULT_USER_AGENT,
    get_env_overrides,
    get_settings,
    invalidate_settings_cache,
    load_settings,
)


def test_defaults():
    settings = load_settings(apply_env=False)
    assert settings.environment == "development"
    assert settings.is_development is True
    assert settings.restricted_egress is False
    assert settings.proxy.default_timeout_ms == DEFAULT_TIMEOUT_MS
    assert settings.proxy.max_request_bytes == DEFAULT_MAX_BYTES
    assert settings.proxy.max_response_bytes == DEFAULT_MAX_BYTES
    assert settings.proxy.user_agent == DEFAULT_USER_AGENT
    assert settings.db_path is None


def test_production_restricts_egress_by_default():
    settings = load_settings({"environment": "production"}, apply_env=False)
    assert settings.restricted_egress is True
    assert settings.is_development is False


def test_explicit_restriction_wins_over_environment_default():
    settings = load_settings(
        {"environment": "production", "proxy": {"restricted_egress": False}}, apply_env=False
    )
    assert settings.restricted_egress is False


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("RELAY_ENVIRONMENT", "production")
    monkeypatch.setenv("RELAY_DEFAULT_TIMEOUT_MS", "5000")
    monkeypatch.setenv("RELAY_MAX_RESPONSE_BYTES", "1024")
    monkeypatch.setenv("RELAY_LOG_LEVEL", "DEBUG")
    monkeypatch.setenv("RELAY_DB_PATH", "/tmp/relay-test.sqlite")

    settings = load_settings({"proxy": {"default_timeout_ms": 100}})

    assert settings.environment == "production"
    assert settings.restricted_egress is True
    assert settings.proxy.default_timeout_ms == 5000
    assert settings.proxy.max_response_bytes == 1024
    assert settings.logging.level == "DEBUG"
    assert settings.db_path == Path("/tmp/relay-test.sqlite")
    assert get_env_overrides()["default_timeout_ms"] == "5000"


def test_environment_ignored_when_disabled(monkeypatch):
    monkeypatch.setenv("RELAY_ENVIRONMENT", "production")
    assert load_settings(apply_env=False).environment == "development"


@pytest.mark.parametrize(
    "raw",
    [
        {"environment": "staging"},
        {"proxy": {"default_timeout_ms": 0}},
        {"proxy": {"max_response_bytes": -1}},
        {"proxy": {"user_agent": ""}},
    ],
)
def test_invalid_values_raise_configuration_error(raw):
    with pytest.raises(ConfigurationError) as info:
        load_settings(raw, apply_env=False)
    assert info.value.code is ErrorCode.E_CONFIG_INVALID
    assert "Configuration validation failed" in info.value.message


def test_invalid_environment_variable(monkeypatch):
    monkeypatch.setenv("RELAY_DEFAULT_TIMEOUT_MS", "soon")
    with pytest.raises(ConfigurationError):
        load_settings()


def test_config_hash_tracks_effective_values():
    base = load_settings(apply_env=False)
    assert base.config_hash() == load_settings(apply_env=False).config_hash()
    assert base.config_hash() != load_settings({"environment": "production"}, apply_env=False).config_hash()


def test_get_settings_is_cached_until_invalidated(monkeypatch):
    first = get_settings()
    assert get_settings() is first

    monkeypatch.setenv("RELAY_ENVIRONMENT", "production")
    assert get_settings().environment == "development"

    invalidate_settings_cache()
    assert get_settings().environment == "production"
