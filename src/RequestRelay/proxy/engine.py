# === NAVMAP v1 ===
# {
#   "module": "RequestRelay.proxy.engine",
#   "purpose": "Compose validation, egress policy, request building and dispatch into one call",
#   "sections": [
#     {
#       "id": "proxyengine",
#       "name": "ProxyEngine",
#       "anchor": "class-proxyengine",
#       "kind": "class"
#     }
#   ]
# }
# === /NAVMAP ===

"""
Relay engine.

``ProxyEngine.execute`` is the single entry point for a relayed call.  It
runs the four stages in order and always returns exactly one
:data:`NormalizedResult`:

1. validate the raw payload,
2. apply the egress policy to the URL's hostname,
3. build the sanitized request,
4. dispatch it and normalize the response.

Any :class:`RelayError` raised along the way becomes a
:class:`TransportFailure` carrying that error's status and code.  Anything
else becomes a 500 whose message is the exception text in development and
the generic "Internal server error" otherwise.

Usage:
    async with ProxyEngine(load_settings()) as engine:
        result = await engine.execute({"url": "https://example.com", "method": "GET"})
        payload = result.to_payload()
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Optional

import anyio.to_thread
import httpx

from RequestRelay.errors import GENERIC_INTERNAL_MESSAGE, ErrorCode, RelayError
from RequestRelay.logging_config import generate_correlation_id
from RequestRelay.proxy.builder import build_request
from RequestRelay.proxy.client import create_http_client
from RequestRelay.proxy.dispatcher import Dispatcher, elapsed_ms
from RequestRelay.proxy.egress import EgressPolicyGuard
from RequestRelay.proxy.metrics import record_result
from RequestRelay.proxy.types import NormalizedResult, OutboundRequestSpec, TransportFailure
from RequestRelay.proxy.validation import validate_request
from RequestRelay.settings import RelaySettings, get_settings
from RequestRelay.storage.base import HistoryEntry, HistoryStore

logger = logging.getLogger(__name__)


def _body_as_text(body: Any) -> Optional[str]:
    if body is None or isinstance(body, str):
        return body
    if isinstance(body, (bytes, bytearray)):
        return bytes(body).decode("utf-8", errors="replace")
    try:
        return json.dumps(body, ensure_ascii=False)
    except (TypeError, ValueError):
        return repr(body)


class ProxyEngine:
    """Run relayed calls against one shared connection pool.

    Attributes:
        settings: Read-only relay settings.
        guard: Egress policy built from ``settings.restricted_egress``.
        client: Shared ``httpx.AsyncClient``.
        dispatcher: Performs the upstream exchange.
        history: Optional store receiving one entry per validated call made
            with an owner key.
    """

    def __init__(
        self,
        settings: Optional[RelaySettings] = None,
        *,
        client: Optional[httpx.AsyncClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        history: Optional[HistoryStore] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.guard = EgressPolicyGuard(restricted=self.settings.restricted_egress)
        self._owns_client = client is None
        self.client = client or create_http_client(self.settings.proxy, transport=transport)
        self.dispatcher = Dispatcher(self.client, self.settings.proxy)
        self.history = history

    async def execute(
        self, raw: Any, *, owner: Optional[str] = None, started: Optional[float] = None
    ) -> NormalizedResult:
        """Relay one call described by ``raw``. Never raises.

        Args:
            raw: Untrusted request payload (``url``, ``method``, ``headers``,
                ``body``, ``timeoutMs``, ``auth``).
            owner: Opaque owner key; when given and a history store is
                attached, the call is saved.
            started: ``time.perf_counter()`` value to measure from; the server
                passes the moment it began reading the request body.
        """
        if started is None:
            started = time.perf_counter()
        correlation_id = generate_correlation_id()
        spec: Optional[OutboundRequestSpec] = None
        try:
            spec = validate_request(raw, default_timeout_ms=self.settings.proxy.default_timeout_ms)
            self.guard.check(spec.url)
            built = build_request(spec, self.settings.proxy)
            result: NormalizedResult = await self.dispatcher.dispatch(built, started=started)
        except RelayError as exc:
            result = TransportFailure(
                http_status=exc.http_status,
                error=exc.message,
                code=exc.code,
                duration_ms=elapsed_ms(started),
            )
        except Exception as exc:
            logger.exception(
                "Unexpected failure while relaying request",
                extra={"correlation_id": correlation_id, "stage": "engine"},
            )
            message = str(exc) or GENERIC_INTERNAL_MESSAGE
            result = TransportFailure(
                http_status=500,
                error=message if self.settings.is_development else GENERIC_INTERNAL_MESSAGE,
                code=ErrorCode.E_INTERNAL,
                duration_ms=elapsed_ms(started),
            )

        record_result(result)
        self._log_result(result, spec, correlation_id)
        if owner and spec is not None and self.history is not None:
            await self._remember(owner, spec, result, correlation_id)
        return result

    def _log_result(
        self, result: NormalizedResult, spec: Optional[OutboundRequestSpec], correlation_id: str
    ) -> None:
        fields = {
            "kind": result.kind,
            "duration_ms": result.duration_ms,
            "method": spec.method if spec else None,
            "host": spec.hostname if spec else None,
        }
        if isinstance(result, TransportFailure):
            fields.update(status=result.http_status, code=result.code.value)
            level = logging.WARNING if result.http_status >= 500 else logging.INFO
        else:
            fields["status"] = result.status
            level = logging.INFO
        logger.log(
            level,
            "relayed %s %s -> %s",
            fields["method"] or "-",
            fields["host"] or "-",
            fields["status"],
            extra={"correlation_id": correlation_id, "stage": "engine", "extra_fields": fields},
        )

    async def _remember(
        self,
        owner: str,
        spec: OutboundRequestSpec,
        result: NormalizedResult,
        correlation_id: str,
    ) -> None:
        entry = HistoryEntry(
            owner=owner,
            url=spec.url,
            method=spec.method,
            headers=dict(spec.headers),
            body=_body_as_text(spec.body),
            response_status=None if isinstance(result, TransportFailure) else result.status,
            duration_ms=result.duration_ms,
        )
        try:
            await anyio.to_thread.run_sync(self.history.save, entry)
        except Exception:
            logger.warning(
                "Failed to save request history",
                exc_info=True,
                extra={"correlation_id": correlation_id, "stage": "history"},
            )

    async def aclose(self) -> None:
        """Close the connection pool if this engine created it."""
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self) -> "ProxyEngine":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(environment={self.settings.environment!r}, "
            f"restricted={self.guard.restricted})"
        )


__all__ = ["ProxyEngine"]
