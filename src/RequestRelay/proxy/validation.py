"""Request validator: first stage of a relayed call.

Turns an untrusted payload (typically decoded JSON) into an
:class:`OutboundRequestSpec` or raises :class:`InputError`.  Nothing here
touches the network, and every check is linear in the input size so the
stage terminates for arbitrary strings.
"""

from __future__ import annotations

import math
import re
from typing import Any, Dict, Mapping, Optional

import httpx

from RequestRelay.errors import InputError
from RequestRelay.proxy.types import AuthSpec, OutboundRequestSpec
from RequestRelay.settings import DEFAULT_TIMEOUT_MS

#: RFC 9110 token characters; a method or header name outside this set
#: cannot be sent
_TOKEN = re.compile(r"[!#$%&'*+\-.^_`|~0-9A-Za-z]+")

_ALLOWED_SCHEMES = ("http", "https")

#: Header values go on the wire as ASCII; control characters other than tab
#: would split or truncate the header block
_HEADER_VALUE = re.compile(r"[\t\x20-\x7e]*")

#: Upper bound for caller timeouts (one day); larger values are clamped
MAX_TIMEOUT_MS = 86_400_000


def validate_request(
    raw: Any, *, default_timeout_ms: int = DEFAULT_TIMEOUT_MS
) -> OutboundRequestSpec:
    """Validate a raw request payload.

    Args:
        raw: Mapping with ``url``, ``method`` and optional ``headers``,
            ``body``, ``timeoutMs`` (or ``timeout``) and ``auth``.
        default_timeout_ms: Timeout used when the payload's is missing or
            unusable.

    Returns:
        Immutable spec with the method upper-cased and the URL stripped.

    Raises:
        InputError: If url or method are missing, the URL is not an absolute
            http(s) URL, or headers/auth have the wrong shape.
    """
    if not isinstance(raw, Mapping):
        raise InputError("Request payload must be an object")

    url = raw.get("url")
    method = raw.get("method")
    if url is None or url == "":
        raise InputError("URL is required")
    if method is None or method == "":
        raise InputError("Method is required")
    if not isinstance(url, str):
        raise InputError("URL must be a string")
    if not isinstance(method, str):
        raise InputError("Method must be a string")

    url = url.strip()
    method = method.strip().upper()
    if not _TOKEN.fullmatch(method):
        raise InputError(f"Invalid HTTP method: {method[:32]!r}")

    _check_url(url)

    timeout_value = raw.get("timeoutMs", raw.get("timeout"))
    return OutboundRequestSpec(
        url=url,
        method=method,
        headers=_coerce_headers(raw.get("headers")),
        body=raw.get("body"),
        timeout_ms=parse_timeout_ms(timeout_value, default_timeout_ms),
        auth=_coerce_auth(raw.get("auth")),
    )


def _check_url(url: str) -> None:
    try:
        parsed = httpx.URL(url)
    except (httpx.InvalidURL, TypeError, ValueError) as exc:
        raise InputError("Invalid URL format") from exc
    if parsed.scheme not in _ALLOWED_SCHEMES:
        raise InputError("Invalid URL format", details={"reason": "scheme must be http or https"})
    if not parsed.host:
        raise InputError("Invalid URL format", details={"reason": "missing host"})


def parse_timeout_ms(value: Any, default: int = DEFAULT_TIMEOUT_MS) -> int:
    """Parse a caller timeout in milliseconds.

    Integers, floats and numeric strings are accepted; anything absent,
    unparseable, non-finite or non-positive yields ``default``.  Values above
    :data:`MAX_TIMEOUT_MS` are clamped to it.

    Examples:
        >>> parse_timeout_ms("2500")
        2500
        >>> parse_timeout_ms("soon")
        30000
        >>> parse_timeout_ms(10**400)
        86400000
    """
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return default
    if not isinstance(value, (int, float)):
        return default
    if isinstance(value, float) and not math.isfinite(value):
        return default
    timeout = int(value)
    if timeout <= 0:
        return default
    return min(timeout, MAX_TIMEOUT_MS)


def _coerce_headers(value: Any) -> Dict[str, str]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise InputError("Headers must be an object of name/value pairs")
    headers: Dict[str, str] = {}
    for name, header_value in value.items():
        if not isinstance(name, str) or not name.strip():
            raise InputError("Header names must be non-empty strings")
        name = name.strip()
        if not _TOKEN.fullmatch(name):
            raise InputError(f"Invalid header name: {name[:64]!r}")
        if header_value is None:
            continue
        text = header_value if isinstance(header_value, str) else str(header_value)
        if not _HEADER_VALUE.fullmatch(text):
            raise InputError(f"Invalid value for header {name!r}: only printable ASCII is allowed")
        headers[name] = text
    return headers


def _coerce_auth(value: Any) -> Optional[AuthSpec]:
    if value is None:
        return None
    if not isinstance(value, Mapping):
        raise InputError("Auth must be an object with 'type' and 'token'")
    auth_type = value.get("type")
    token = value.get("token")
    return AuthSpec(
        type=str(auth_type) if auth_type is not None else "",
        token=str(token) if token not in (None, "") else None,
    )


__all__ = ["MAX_TIMEOUT_MS", "validate_request", "parse_timeout_ms"]
