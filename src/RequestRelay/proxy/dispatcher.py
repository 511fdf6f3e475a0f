# === NAVMAP v1 ===
# {
#   "module": "RequestRelay.proxy.dispatcher",
#   "purpose": "Send built requests under a hard deadline and size ceiling; classify transport faults",
#   "sections": [
#     {
#       "id": "classify-transport-error",
#       "name": "classify_transport_error",
#       "anchor": "function-classify-transport-error",
#       "kind": "function"
#     },
#     {
#       "id": "dispatcher",
#       "name": "Dispatcher",
#       "anchor": "class-dispatcher",
#       "kind": "class"
#     }
#   ]
# }
# === /NAVMAP ===

"""
Upstream dispatch.

One :class:`Dispatcher` call performs exactly one HTTP exchange:

1. the built request is sent with redirects disabled,
2. the payload is streamed and counted against the response ceiling,
3. the completed exchange is normalized into ``Success`` or ``UpstreamError``.

The whole exchange, connect through last byte, runs inside
``anyio.fail_after(timeout)``.  When the deadline fires the in-flight
request is cancelled and the pooled connection released by the
``finally`` around the stream, so no work survives a timed-out call.

Failures that prevent an exchange from completing are classified by
:func:`classify_transport_error` into a :class:`TransportError` carrying the
HTTP status and :class:`ErrorCode` the engine reports.
"""

from __future__ import annotations

import logging
import socket
import time
from typing import Iterator, Optional, Tuple

import anyio
import httpx

from RequestRelay.errors import ErrorCode, ResponseTooLarge, TransportError
from RequestRelay.proxy.normalize import normalize_response
from RequestRelay.proxy.types import BuiltRequest, Success, UpstreamError
from RequestRelay.settings import ProxySettings

logger = logging.getLogger(__name__)

CONNECTION_REFUSED_MESSAGE = "Connection refused - server may be down or URL incorrect"
DNS_FAILURE_MESSAGE = "DNS lookup failed - check the URL"
TIMEOUT_MESSAGE = "Request timeout - server took too long to respond"
NO_RESPONSE_MESSAGE = "No response received from server"
UNEXPECTED_MESSAGE = "Unexpected error while sending the request"

# Resolver and socket messages surfaced by httpcore when no errno object survives
_DNS_MARKERS = (
    "name or service not known",
    "nodename nor servname",
    "getaddrinfo failed",
    "temporary failure in name resolution",
    "no address associated with hostname",
    "name resolution",
)
_REFUSED_MARKERS = (
    "connection refused",
    "actively refused",
    "[errno 111]",
    "[errno 61]",
)


def elapsed_ms(started: float) -> int:
    """Whole milliseconds since ``started`` (a ``time.perf_counter`` value)."""
    return max(0, int(round((time.perf_counter() - started) * 1000.0)))


def _exception_chain(exc: BaseException) -> Iterator[BaseException]:
    seen = set()
    current: Optional[BaseException] = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = current.__cause__ or current.__context__


def classify_transport_error(exc: BaseException) -> TransportError:
    """Map a failed exchange to the relay's transport failure categories.

    ============================  ======  =====================
    Cause                         Status  Code
    ============================  ======  =====================
    deadline / read timeout       408     ``E_TIMEOUT``
    name resolution failure       404     ``E_DNS``
    connection refused            503     ``E_CONN_REFUSED``
    payload above ceiling         502     ``E_RESPONSE_TOO_LARGE``
    sent, no complete response    502     ``E_NO_RESPONSE``
    anything else                 500     ``E_INTERNAL``
    ============================  ======  =====================
    """
    if isinstance(exc, TransportError):
        return exc

    chain = list(_exception_chain(exc))
    if any(isinstance(item, (httpx.TimeoutException, TimeoutError)) for item in chain):
        return TransportError(TIMEOUT_MESSAGE, http_status=408, code=ErrorCode.E_TIMEOUT)
    if any(isinstance(item, socket.gaierror) for item in chain):
        return TransportError(DNS_FAILURE_MESSAGE, http_status=404, code=ErrorCode.E_DNS)
    if any(isinstance(item, ConnectionRefusedError) for item in chain):
        return TransportError(
            CONNECTION_REFUSED_MESSAGE, http_status=503, code=ErrorCode.E_CONN_REFUSED
        )

    if isinstance(exc, httpx.ConnectError):
        text = " ".join(str(item) for item in chain).lower()
        if any(marker in text for marker in _DNS_MARKERS):
            return TransportError(DNS_FAILURE_MESSAGE, http_status=404, code=ErrorCode.E_DNS)
        if any(marker in text for marker in _REFUSED_MARKERS):
            return TransportError(
                CONNECTION_REFUSED_MESSAGE, http_status=503, code=ErrorCode.E_CONN_REFUSED
            )
        return TransportError(NO_RESPONSE_MESSAGE, http_status=502, code=ErrorCode.E_NO_RESPONSE)

    if isinstance(
        exc,
        (httpx.NetworkError, httpx.RemoteProtocolError, httpx.ProxyError, httpx.DecodingError, ConnectionError),
    ):
        return TransportError(NO_RESPONSE_MESSAGE, http_status=502, code=ErrorCode.E_NO_RESPONSE)

    return TransportError(UNEXPECTED_MESSAGE, http_status=500, code=ErrorCode.E_INTERNAL)


class Dispatcher:
    """Perform single HTTP exchanges through a shared async client.

    Attributes:
        client: Pooled ``httpx.AsyncClient`` (redirects disabled).
        settings: Proxy settings supplying the response ceiling.
    """

    def __init__(self, client: httpx.AsyncClient, settings: ProxySettings) -> None:
        self.client = client
        self.settings = settings

    async def dispatch(self, built: BuiltRequest, *, started: float) -> Success | UpstreamError:
        """Send ``built`` and normalize the response.

        Args:
            built: Sanitized request.
            started: ``time.perf_counter()`` value taken when validation began;
                the result's duration is measured from it.

        Raises:
            TransportError: When no exchange completed (timeout, DNS, refused,
                dropped connection, oversized payload, unexpected fault).
        """
        timeout_s = built.timeout_ms / 1000.0
        try:
            with anyio.fail_after(timeout_s):
                response, raw = await self._exchange(built, timeout_s)
        except TransportError:
            raise
        except (OSError, httpx.HTTPError) as exc:
            failure = classify_transport_error(exc)
            logger.debug(
                "Upstream exchange failed",
                extra={
                    "stage": "dispatch",
                    "extra_fields": {
                        "method": built.method,
                        "error_type": type(exc).__name__,
                        "code": failure.code.value,
                    },
                },
            )
            raise failure from exc
        return normalize_response(response, raw, built, elapsed_ms(started))

    async def _exchange(self, built: BuiltRequest, timeout_s: float) -> Tuple[httpx.Response, bytes]:
        request = self.client.build_request(
            built.method,
            built.url,
            headers=built.headers,
            content=built.content,
            timeout=httpx.Timeout(timeout_s),
        )
        response = await self.client.send(request, stream=True, follow_redirects=False)
        try:
            raw = await self._read_limited(response)
        finally:
            await response.aclose()
        return response, raw

    async def _read_limited(self, response: httpx.Response) -> bytes:
        limit = self.settings.max_response_bytes
        declared = response.headers.get("content-length")
        if declared is not None and declared.isdigit() and int(declared) > limit:
            raise ResponseTooLarge(limit, observed=int(declared))

        chunks = []
        received = 0
        async for chunk in response.aiter_bytes():
            received += len(chunk)
            if received > limit:
                raise ResponseTooLarge(limit, observed=received)
            chunks.append(chunk)
        return b"".join(chunks)


__all__ = [
    "Dispatcher",
    "classify_transport_error",
    "elapsed_ms",
    "CONNECTION_REFUSED_MESSAGE",
    "DNS_FAILURE_MESSAGE",
    "TIMEOUT_MESSAGE",
    "NO_RESPONSE_MESSAGE",
]
