"""Request relay core: validation, egress policy, request building and dispatch."""

from .builder import build_request, sanitize_headers
from .dispatcher import Dispatcher, classify_transport_error
from .egress import EgressPolicyGuard
from .engine import ProxyEngine
from .normalize import parse_body
from .types import (
    AuthSpec,
    BuiltRequest,
    EgressDecision,
    NormalizedResult,
    OutboundRequestSpec,
    Success,
    TransportFailure,
    UpstreamError,
)
from .validation import validate_request

__all__ = [
    "AuthSpec",
    "BuiltRequest",
    "Dispatcher",
    "EgressDecision",
    "EgressPolicyGuard",
    "NormalizedResult",
    "OutboundRequestSpec",
    "ProxyEngine",
    "Success",
    "TransportFailure",
    "UpstreamError",
    "build_request",
    "classify_transport_error",
    "parse_body",
    "sanitize_headers",
    "validate_request",
]
