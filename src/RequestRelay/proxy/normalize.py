"""Response normalization.

Turns a completed upstream exchange into :class:`Success` or
:class:`UpstreamError`.  Body interpretation is an explicit fallible parse:
:func:`parse_body` returns a :class:`ParsedBody` describing whether JSON
decoding happened, and a failed parse yields the raw text instead of an
error.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from RequestRelay.proxy.types import BuiltRequest, Success, UpstreamError

JSON_MEDIA_TYPE = "application/json"


@dataclass(frozen=True, slots=True)
class ParsedBody:
    """Outcome of interpreting a response payload."""

    data: Any
    parsed: bool
    """True when ``data`` is the result of JSON decoding."""

    failure: Optional[str] = None
    """Why JSON decoding was skipped or failed, when it was attempted."""


def decode_text(raw: bytes, encoding: Optional[str] = None) -> Optional[str]:
    """Strictly decode ``raw``; return ``None`` when it is not valid text."""
    try:
        return raw.decode(encoding or "utf-8")
    except (UnicodeDecodeError, LookupError):
        return None


def try_parse_json(text: str) -> ParsedBody:
    """Parse ``text`` as JSON, falling back to the text itself."""
    try:
        return ParsedBody(data=json.loads(text), parsed=True)
    except (ValueError, RecursionError) as exc:
        return ParsedBody(data=text, parsed=False, failure=f"invalid JSON: {exc}")


def parse_body(content_type: Optional[str], raw: bytes, encoding: Optional[str] = None) -> ParsedBody:
    """Interpret a response payload.

    JSON content types with a textual payload are decoded as JSON.  Every
    other case, including a failed decode, passes the payload through as
    text.  Payloads that are not valid text in their declared charset are
    decoded as UTF-8 with replacement characters so the result stays serializable.

    Examples:
        >>> parse_body("application/json; charset=utf-8", b'{"x":1}').data
        {'x': 1}
        >>> parse_body("application/json", b"not json").data
        'not json'
        >>> parse_body("text/plain", b'{"x":1}').data
        '{"x":1}'
    """
    text = decode_text(raw, encoding)
    if text is None:
        return ParsedBody(
            data=raw.decode("utf-8", errors="replace"),
            parsed=False,
            failure="payload is not valid text",
        )
    if content_type and JSON_MEDIA_TYPE in content_type.lower():
        return try_parse_json(text)
    return ParsedBody(data=text, parsed=False)


def normalize_response(
    response: httpx.Response,
    raw: bytes,
    built: BuiltRequest,
    duration_ms: int,
) -> Success | UpstreamError:
    """Build the result for a completed exchange.

    Args:
        response: Upstream response (status line and headers).
        raw: Full payload as read under the size ceiling.
        built: The request that produced ``response``.
        duration_ms: Elapsed time since validation began.
    """
    status = response.status_code
    parsed = parse_body(response.headers.get("content-type"), raw, response.charset_encoding)
    fields = dict(
        status=status,
        status_text=response.reason_phrase or httpx.codes.get_reason_phrase(status),
        headers=dict(response.headers),
        data=parsed.data,
        duration_ms=duration_ms,
        size_bytes=len(raw),
        redirected=str(response.url) != built.url,
    )
    if status >= 400:
        return UpstreamError(**fields)
    return Success(**fields)


__all__ = [
    "ParsedBody",
    "decode_text",
    "try_parse_json",
    "parse_body",
    "normalize_response",
]
