"""
Canonical Types for the Relay Pipeline

Frozen, slotted dataclasses used as contracts between the four stages of a
relayed call:

  raw payload → validate_request() → OutboundRequestSpec
  OutboundRequestSpec → EgressPolicyGuard.check() → EgressDecision
  OutboundRequestSpec → build_request() → BuiltRequest
  BuiltRequest → Dispatcher.dispatch() → Success | UpstreamError
  any failure → TransportFailure

``NormalizedResult`` is a tagged union of three cases.  ``Success`` and
``UpstreamError`` share their fields; they differ only in ``kind`` and in the
``error: true`` flag their payload carries, which is what callers branch on.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Literal, Mapping, Optional, Union

import httpx

from RequestRelay.errors import ErrorCode

#: HTTP methods whose requests carry a body when one is supplied
BODY_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


# ============================================================================
# INPUT
# ============================================================================


@dataclass(frozen=True, slots=True)
class AuthSpec:
    """Caller-requested authentication for the outbound request."""

    type: str
    token: Optional[str] = None


@dataclass(frozen=True, slots=True)
class OutboundRequestSpec:
    """Validated description of one outbound call. Never persisted by the core."""

    url: str
    """Absolute http(s) URL as supplied by the caller."""

    method: str
    """HTTP method, upper-cased."""

    headers: Mapping[str, str] = field(default_factory=dict)
    """Caller-supplied headers before sanitization."""

    body: Any = None
    """Opaque payload: str, bytes, or any JSON-serializable value."""

    timeout_ms: int = 30_000
    """Hard upper bound on the upstream exchange."""

    auth: Optional[AuthSpec] = None

    @property
    def hostname(self) -> str:
        return httpx.URL(self.url).host


@dataclass(frozen=True, slots=True)
class EgressDecision:
    """Outcome of the egress policy for one hostname."""

    allowed: bool
    reason: Optional[str] = None

    def __post_init__(self) -> None:
        if self.allowed and self.reason is not None:
            raise ValueError("EgressDecision.reason must be empty when allowed")
        if not self.allowed and not self.reason:
            raise ValueError("EgressDecision.reason is required when denied")


@dataclass(frozen=True, slots=True)
class BuiltRequest:
    """Sanitized, ready-to-send request. Owned by a single call."""

    method: str
    url: str
    """URL normalized through ``httpx.URL`` so it compares with ``response.url``."""

    headers: Dict[str, str]
    content: Optional[bytes]
    timeout_ms: int


# ============================================================================
# RESULTS
# ============================================================================


@dataclass(frozen=True, slots=True)
class Success:
    """Upstream answered with a non-error status (1xx-3xx)."""

    status: int
    status_text: str
    headers: Dict[str, str]
    data: Any
    duration_ms: int
    size_bytes: int
    redirected: bool
    kind: Literal["success"] = "success"

    @property
    def is_error(self) -> bool:
        return False

    def to_payload(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "statusText": self.status_text,
            "headers": dict(self.headers),
            "data": self.data,
            "durationMs": self.duration_ms,
            "sizeBytes": self.size_bytes,
            "redirected": self.redirected,
        }


@dataclass(frozen=True, slots=True)
class UpstreamError:
    """Upstream answered with a 4xx/5xx status. Data, not a relay failure."""

    status: int
    status_text: str
    headers: Dict[str, str]
    data: Any
    duration_ms: int
    size_bytes: int
    redirected: bool
    kind: Literal["upstream_error"] = "upstream_error"

    @property
    def is_error(self) -> bool:
        return True

    def to_payload(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "statusText": self.status_text,
            "headers": dict(self.headers),
            "data": self.data,
            "durationMs": self.duration_ms,
            "sizeBytes": self.size_bytes,
            "redirected": self.redirected,
            "error": True,
        }


@dataclass(frozen=True, slots=True)
class TransportFailure:
    """No HTTP exchange completed: bad input, policy block, or network fault."""

    http_status: int
    error: str
    code: ErrorCode
    duration_ms: int
    kind: Literal["transport_failure"] = "transport_failure"

    @property
    def is_error(self) -> bool:
        return True

    def to_payload(self) -> Dict[str, Any]:
        return {
            "httpStatus": self.http_status,
            "error": self.error,
            "code": self.code.value,
            "durationMs": self.duration_ms,
        }


NormalizedResult = Union[Success, UpstreamError, TransportFailure]


__all__ = [
    "BODY_METHODS",
    "AuthSpec",
    "OutboundRequestSpec",
    "EgressDecision",
    "BuiltRequest",
    "Success",
    "UpstreamError",
    "TransportFailure",
    "NormalizedResult",
]
