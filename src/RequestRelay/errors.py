# === NAVMAP v1 ===
# {
#   "module": "RequestRelay.errors",
#   "purpose": "Define the exception hierarchy and error-code catalog used by the relay",
#   "sections": [
#     {"id": "codes", "name": "ErrorCode", "anchor": "COD", "kind": "api"},
#     {"id": "base", "name": "Base Exceptions", "anchor": "BAS", "kind": "api"},
#     {"id": "proxy", "name": "Proxy Errors", "anchor": "PRX", "kind": "api"},
#     {"id": "storage", "name": "Storage Errors", "anchor": "STO", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""Exception hierarchy shared across request validation, egress policy and dispatch.

A relayed call can fail in a handful of well-understood ways: the caller sent
something malformed, the destination is forbidden, the network exchange could
not complete, or something unexpected went wrong locally.  Each category maps
to one exception class carrying the HTTP status the relay answers with and a
canonical :class:`ErrorCode`, so the engine can turn any of them into a
structured result without inspecting messages.

Upstream HTTP error statuses are deliberately absent from this module: a 404
or 500 returned by the target server is data, not a relay failure.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional

__all__ = [
    "ErrorCode",
    "RelayError",
    "InputError",
    "PolicyError",
    "TransportError",
    "ResponseTooLarge",
    "InternalError",
    "ConfigurationError",
    "StorageError",
    "RecordNotFound",
    "GENERIC_INTERNAL_MESSAGE",
]

GENERIC_INTERNAL_MESSAGE = "Internal server error"


class ErrorCode(str, Enum):
    """Canonical error codes attached to every relay failure."""

    # Caller input
    E_INPUT = "E_INPUT"  # Missing or malformed url/method/headers
    E_BODY_TOO_LARGE = "E_BODY_TOO_LARGE"  # Request body above ceiling

    # Egress policy
    E_PRIVATE_NET = "E_PRIVATE_NET"  # Internal/loopback destination in restricted mode

    # Transport
    E_CONN_REFUSED = "E_CONN_REFUSED"
    E_DNS = "E_DNS"
    E_TIMEOUT = "E_TIMEOUT"
    E_NO_RESPONSE = "E_NO_RESPONSE"  # Request sent, connection dropped
    E_RESPONSE_TOO_LARGE = "E_RESPONSE_TOO_LARGE"

    # Local faults
    E_INTERNAL = "E_INTERNAL"
    E_CONFIG_INVALID = "E_CONFIG_INVALID"
    E_STORAGE = "E_STORAGE"
    E_NOT_FOUND = "E_NOT_FOUND"


class RelayError(RuntimeError):
    """Base exception for relay failures that map to a structured response."""

    http_status: int = 500
    default_code: ErrorCode = ErrorCode.E_INTERNAL

    def __init__(
        self,
        message: str,
        *,
        http_status: Optional[int] = None,
        code: Optional[ErrorCode] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if http_status is not None:
            self.http_status = http_status
        self.code = code or self.default_code
        self.details = details or {}


class InputError(RelayError):
    """Raised when the caller's request spec is missing fields or malformed."""

    http_status = 400
    default_code = ErrorCode.E_INPUT


class PolicyError(RelayError):
    """Raised when the destination is forbidden by the egress policy."""

    http_status = 403
    default_code = ErrorCode.E_PRIVATE_NET


class TransportError(RelayError):
    """Raised when no HTTP exchange with the upstream could complete."""

    http_status = 502
    default_code = ErrorCode.E_NO_RESPONSE


class ResponseTooLarge(TransportError):
    """Raised when the upstream payload exceeds the response size ceiling."""

    default_code = ErrorCode.E_RESPONSE_TOO_LARGE

    def __init__(self, limit: int, observed: Optional[int] = None) -> None:
        detail = f" ({observed} bytes)" if observed is not None else ""
        super().__init__(
            f"Response exceeded maximum size of {limit} bytes{detail}",
            details={"limit": limit, "observed": observed},
        )
        self.limit = limit
        self.observed = observed


class InternalError(RelayError):
    """Raised for unanticipated local faults."""

    http_status = 500
    default_code = ErrorCode.E_INTERNAL


class ConfigurationError(RelayError):
    """Raised when settings or environment overrides are invalid."""

    http_status = 500
    default_code = ErrorCode.E_CONFIG_INVALID


class StorageError(RelayError):
    """Raised when the persistence collaborator cannot complete an operation."""

    http_status = 500
    default_code = ErrorCode.E_STORAGE


class RecordNotFound(StorageError):
    """Raised when a record is absent or owned by a different owner key."""

    http_status = 404
    default_code = ErrorCode.E_NOT_FOUND

    def __init__(self, kind: str, record_id: str) -> None:
        super().__init__(f"{kind} not found or access denied", details={"id": record_id})
        self.kind = kind
        self.record_id = record_id
