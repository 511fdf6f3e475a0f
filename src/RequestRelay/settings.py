# === NAVMAP v1 ===
# {
#   "module": "RequestRelay.settings",
#   "purpose": "Define configuration models, environment overrides, and the cached settings accessor",
#   "sections": [
#     {"id": "loggingconfiguration", "name": "LoggingConfiguration", "anchor": "class-loggingconfiguration", "kind": "class"},
#     {"id": "proxysettings", "name": "ProxySettings", "anchor": "class-proxysettings", "kind": "class"},
#     {"id": "relaysettings", "name": "RelaySettings", "anchor": "class-relaysettings", "kind": "class"},
#     {"id": "environmentoverrides", "name": "EnvironmentOverrides", "anchor": "class-environmentoverrides", "kind": "class"},
#     {"id": "load-settings", "name": "load_settings", "anchor": "function-load-settings", "kind": "function"},
#     {"id": "get-settings", "name": "get_settings", "anchor": "function-get-settings", "kind": "function"},
#     {"id": "invalidate-settings-cache", "name": "invalidate_settings_cache", "anchor": "function-invalidate-settings-cache", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Configuration models for the request relay.

All process-wide knobs live here: the environment mode, whether egress is
restricted, the default per-call timeout, request/response size ceilings,
the relay's own User-Agent, connection-pool limits and logging.  Values are
read once at startup (``load_settings``) and treated as read-only afterwards;
components receive the settings object explicitly rather than consulting the
environment at call time.

Environment overrides use the ``RELAY_`` prefix, for example
``RELAY_ENVIRONMENT=production`` or ``RELAY_DEFAULT_TIMEOUT_MS=5000``.
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
from pathlib import Path
from typing import Dict, List, Literal, Optional

import platformdirs
from pydantic import BaseModel, Field, ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from RequestRelay import __version__
from RequestRelay.errors import ConfigurationError

__all__ = [
    "LoggingConfiguration",
    "ProxySettings",
    "RelaySettings",
    "EnvironmentOverrides",
    "load_settings",
    "get_settings",
    "invalidate_settings_cache",
    "default_db_path",
    "get_env_overrides",
    "DEFAULT_TIMEOUT_MS",
    "DEFAULT_MAX_BYTES",
    "DEFAULT_USER_AGENT",
]

#: Per-call timeout when the caller omits one (milliseconds)
DEFAULT_TIMEOUT_MS = 30_000

#: Request and response body ceiling (50 MiB each)
DEFAULT_MAX_BYTES = 50 * 1024 * 1024

#: Identifies relayed traffic to upstream servers
DEFAULT_USER_AGENT = f"RequestRelay/{__version__}"

Environment = Literal["development", "production"]

logger = logging.getLogger("RequestRelay")


class LoggingConfiguration(BaseModel):
    """Logging level and output format."""

    level: str = Field(default="INFO", description="Logging level (DEBUG, INFO, WARNING, ERROR)")
    json_output: bool = Field(default=False, description="Emit JSON lines instead of plain text")

    model_config = {"validate_assignment": True}


class ProxySettings(BaseModel):
    """Dispatch policy for outbound requests."""

    restricted_egress: Optional[bool] = Field(
        default=None,
        description="Block internal/loopback destinations; defaults to on in production",
    )
    default_timeout_ms: int = Field(default=DEFAULT_TIMEOUT_MS, gt=0, le=600_000)
    max_request_bytes: int = Field(default=DEFAULT_MAX_BYTES, gt=0)
    max_response_bytes: int = Field(default=DEFAULT_MAX_BYTES, gt=0)
    user_agent: str = Field(default=DEFAULT_USER_AGENT, min_length=1)
    verify_tls: bool = Field(default=True)
    max_connections: int = Field(default=100, ge=1, le=1024)
    max_keepalive_connections: int = Field(default=20, ge=0, le=1024)
    keepalive_expiry_sec: float = Field(default=5.0, gt=0.0, le=600.0)

    model_config = {"validate_assignment": True, "extra": "ignore"}


class RelaySettings(BaseModel):
    """Top-level configuration for the relay process."""

    environment: Environment = Field(default="development")
    proxy: ProxySettings = Field(default_factory=ProxySettings)
    logging: LoggingConfiguration = Field(default_factory=LoggingConfiguration)
    cors_origins: List[str] = Field(default_factory=list)
    db_path: Optional[Path] = Field(
        default=None, description="SQLite file for history and collections (None = in-memory)"
    )

    model_config = {"validate_assignment": True, "extra": "ignore"}

    @model_validator(mode="after")
    def _resolve_restricted_default(self) -> "RelaySettings":
        if self.proxy.restricted_egress is None:
            self.proxy.restricted_egress = self.environment == "production"
        return self

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @property
    def restricted_egress(self) -> bool:
        return bool(self.proxy.restricted_egress)

    def config_hash(self) -> str:
        """Return a stable fingerprint of the effective configuration."""

        payload = json.dumps(self.model_dump(mode="json"), sort_keys=True)
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:16]


def default_db_path() -> Path:
    """Return the per-user SQLite location used when persistence is enabled without a path."""

    return Path(platformdirs.user_data_dir("request-relay")) / "relay.sqlite"


class EnvironmentOverrides(BaseSettings):
    """Environment-derived overrides (``RELAY_*``)."""

    environment: Optional[Environment] = None
    restricted_egress: Optional[bool] = None
    default_timeout_ms: Optional[int] = None
    max_request_bytes: Optional[int] = None
    max_response_bytes: Optional[int] = None
    user_agent: Optional[str] = None
    verify_tls: Optional[bool] = None
    log_level: Optional[str] = None
    log_json: Optional[bool] = None
    db_path: Optional[Path] = None
    cors_origins: Optional[List[str]] = None

    model_config = SettingsConfigDict(env_prefix="RELAY_", case_sensitive=False, extra="ignore")


_PROXY_OVERRIDES = (
    "restricted_egress",
    "default_timeout_ms",
    "max_request_bytes",
    "max_response_bytes",
    "user_agent",
    "verify_tls",
)


def get_env_overrides() -> Dict[str, str]:
    """Return environment-derived overrides as stringified key/value pairs."""

    env = EnvironmentOverrides()
    return {key: str(value) for key, value in env.model_dump(exclude_none=True).items()}


def load_settings(raw: Optional[Dict[str, object]] = None, *, apply_env: bool = True) -> RelaySettings:
    """Build :class:`RelaySettings` from a mapping plus ``RELAY_*`` overrides.

    Args:
        raw: Optional nested mapping mirroring :class:`RelaySettings`.
        apply_env: When ``False`` the process environment is ignored.

    Returns:
        Validated settings with the restricted-egress default resolved.

    Raises:
        ConfigurationError: If the mapping or an override fails validation.
    """

    data: Dict[str, object] = dict(raw or {})
    proxy: Dict[str, object] = dict(data.get("proxy") or {})  # type: ignore[arg-type]
    logging_section: Dict[str, object] = dict(data.get("logging") or {})  # type: ignore[arg-type]

    try:
        if apply_env:
            env = EnvironmentOverrides()
            if env.environment is not None:
                data["environment"] = env.environment
                logger.info("Config overridden: environment=%s", env.environment, extra={"stage": "config"})
            for key in _PROXY_OVERRIDES:
                value = getattr(env, key)
                if value is not None:
                    proxy[key] = value
                    logger.info("Config overridden: %s=%s", key, value, extra={"stage": "config"})
            if env.log_level is not None:
                logging_section["level"] = env.log_level
            if env.log_json is not None:
                logging_section["json_output"] = env.log_json
            if env.db_path is not None:
                data["db_path"] = env.db_path
            if env.cors_origins is not None:
                data["cors_origins"] = env.cors_origins

        data["proxy"] = proxy
        data["logging"] = logging_section
        return RelaySettings.model_validate(data)
    except ValidationError as exc:
        messages = []
        for error in exc.errors():
            location = " -> ".join(str(part) for part in error["loc"])
            messages.append(f"{location}: {error['msg']}")
        raise ConfigurationError(
            "Configuration validation failed:\n  " + "\n  ".join(messages)
        ) from exc


_SETTINGS_CACHE: Optional[RelaySettings] = None
_SETTINGS_LOCK = threading.Lock()


def get_settings() -> RelaySettings:
    """Return memoised settings loaded from defaults and the environment."""

    global _SETTINGS_CACHE  # noqa: PLW0603

    with _SETTINGS_LOCK:
        if _SETTINGS_CACHE is None:
            _SETTINGS_CACHE = load_settings()
        return _SETTINGS_CACHE


def invalidate_settings_cache() -> None:
    """Drop the cached settings so the next access re-reads the environment."""

    global _SETTINGS_CACHE  # noqa: PLW0603

    with _SETTINGS_LOCK:
        _SETTINGS_CACHE = None
