"""Outbound request builder.

Derives the wire request from a validated spec:

- strips hop-by-hop and forgeable headers supplied by the caller,
- guarantees a User-Agent identifying the relay,
- injects bearer authentication when requested,
- attaches a body only for POST, PUT, PATCH and DELETE,
- enforces the request body ceiling.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Mapping, Optional

import httpx

from RequestRelay.errors import ErrorCode, InputError
from RequestRelay.proxy.types import BODY_METHODS, BuiltRequest, OutboundRequestSpec
from RequestRelay.settings import ProxySettings

#: Caller headers that are never forwarded (compared case-insensitively)
FORBIDDEN_HEADERS = frozenset(
    {
        "host",
        "origin",
        "referer",
        "user-agent",
        "accept-encoding",
        "connection",
        "content-length",
    }
)

#: ``auth.type`` value that enables bearer injection
BEARER_AUTH_TYPE = "bearer"


def sanitize_headers(headers: Mapping[str, str]) -> Dict[str, str]:
    """Return a copy of ``headers`` without :data:`FORBIDDEN_HEADERS`.

    Examples:
        >>> sanitize_headers({"Host": "evil", "X-Trace": "1"})
        {'X-Trace': '1'}
    """
    return {name: value for name, value in headers.items() if name.lower() not in FORBIDDEN_HEADERS}


def _has_header(headers: Mapping[str, str], name: str) -> bool:
    target = name.lower()
    return any(key.lower() == target for key in headers)


def _set_header(headers: Dict[str, str], name: str, value: str) -> None:
    for key in [key for key in headers if key.lower() == name.lower()]:
        del headers[key]
    headers[name] = value


def encode_body(body: Any, headers: Dict[str, str]) -> Optional[bytes]:
    """Serialize a caller body to bytes.

    ``None`` and ``""`` mean no body.  Strings are UTF-8 encoded unchanged,
    bytes pass through, and any other value is sent as JSON with a JSON
    content type unless the caller chose one.

    Raises:
        InputError: If the value cannot be serialized as JSON.
    """
    if body is None or body == "":
        return None
    if isinstance(body, (bytes, bytearray)):
        return bytes(body)
    if isinstance(body, str):
        return body.encode("utf-8")
    try:
        encoded = json.dumps(body, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    except (TypeError, ValueError) as exc:
        raise InputError("Body is not JSON-serializable") from exc
    if not _has_header(headers, "content-type"):
        headers["Content-Type"] = "application/json"
    return encoded


def build_request(spec: OutboundRequestSpec, settings: ProxySettings) -> BuiltRequest:
    """Build the sanitized request for ``spec``.

    Args:
        spec: Validated outbound request.
        settings: Proxy settings supplying the User-Agent and body ceiling.

    Returns:
        BuiltRequest ready for :class:`~RequestRelay.proxy.dispatcher.Dispatcher`.

    Raises:
        InputError: If the encoded body exceeds ``settings.max_request_bytes``
            (HTTP 413) or cannot be serialized.
    """
    headers = sanitize_headers(spec.headers)
    if not _has_header(headers, "user-agent"):
        headers["User-Agent"] = settings.user_agent

    auth = spec.auth
    if auth is not None and auth.type.strip().lower() == BEARER_AUTH_TYPE and auth.token:
        _set_header(headers, "Authorization", f"Bearer {auth.token}")

    content: Optional[bytes] = None
    if spec.method in BODY_METHODS:
        content = encode_body(spec.body, headers)
        if content is not None and len(content) > settings.max_request_bytes:
            raise InputError(
                f"Request body exceeds maximum size of {settings.max_request_bytes} bytes",
                http_status=413,
                code=ErrorCode.E_BODY_TOO_LARGE,
            )

    return BuiltRequest(
        method=spec.method,
        url=str(httpx.URL(spec.url)),
        headers=headers,
        content=content,
        timeout_ms=spec.timeout_ms,
    )


__all__ = [
    "FORBIDDEN_HEADERS",
    "BEARER_AUTH_TYPE",
    "sanitize_headers",
    "encode_body",
    "build_request",
]
