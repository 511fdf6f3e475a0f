"""
Structured Logging Utilities

Centralizes logging setup for the relay: masking of credential-bearing
fields, JSON log records, correlation identifiers, and idempotent handler
installation so repeated calls (tests, ``relay serve`` reloads) never stack
duplicate handlers.
"""

from __future__ import annotations

import json
import logging
import sys
import uuid
from datetime import datetime, timezone
from typing import Dict, Optional, TextIO

from .settings import LoggingConfiguration

LOGGER_NAME = "RequestRelay"

_SENSITIVE_KEYS = {"authorization", "api_key", "apikey", "token", "secret", "password", "cookie"}


def mask_sensitive_data(payload: Dict[str, object]) -> Dict[str, object]:
    """Remove secrets from structured payloads prior to logging.

    Args:
        payload: Arbitrary key-value pairs that may contain credentials or
            tokens copied from relayed requests.

    Returns:
        Copy of the payload where common secret fields are replaced with
        `***masked***`. Nested mappings are masked recursively.

    Examples:
        >>> mask_sensitive_data({"token": "secret", "status": 200})
        {'token': '***masked***', 'status': 200}
    """
    masked: Dict[str, object] = {}
    for key, value in payload.items():
        lower = str(key).lower()
        if lower in _SENSITIVE_KEYS:
            masked[key] = "***masked***"
        elif isinstance(value, dict):
            masked[key] = mask_sensitive_data(value)
        elif isinstance(value, str) and value.lower().startswith("bearer "):
            masked[key] = "***masked***"
        else:
            masked[key] = value
    return masked


def generate_correlation_id() -> str:
    """Create a short identifier linking the log lines of one relayed call.

    Examples:
        >>> len(generate_correlation_id())
        12
    """
    return uuid.uuid4().hex[:12]


class JSONFormatter(logging.Formatter):
    """Formatter emitting one JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        now = datetime.now(timezone.utc)
        log_obj: Dict[str, object] = {
            "timestamp": now.isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", None),
            "stage": getattr(record, "stage", None),
        }
        extra_fields = getattr(record, "extra_fields", None)
        if isinstance(extra_fields, dict):
            log_obj.update(extra_fields)
        if record.exc_info:
            log_obj["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(mask_sensitive_data(log_obj), default=str)


def setup_logging(
    config: LoggingConfiguration, stream: Optional[TextIO] = None
) -> logging.Logger:
    """Configure the ``RequestRelay`` logger.

    Args:
        config: Logging configuration containing level and output format.
        stream: Optional stream override (defaults to ``sys.stderr``).

    Returns:
        Configured logger instance scoped to the relay.

    Examples:
        >>> logger = setup_logging(LoggingConfiguration(level="INFO"))
        >>> logger.name
        'RequestRelay'
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, config.level.upper(), logging.INFO))

    for handler in list(logger.handlers):
        if getattr(handler, "_relay_managed", False):
            logger.removeHandler(handler)
            handler.close()

    handler = logging.StreamHandler(stream or sys.stderr)
    if config.json_output:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    handler._relay_managed = True  # type: ignore[attr-defined]
    logger.addHandler(handler)
    logger.propagate = True

    return logger


__all__ = ["setup_logging", "mask_sensitive_data", "generate_correlation_id", "JSONFormatter"]
