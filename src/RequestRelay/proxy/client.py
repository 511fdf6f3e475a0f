# === NAVMAP v1 ===
# {
#   "module": "RequestRelay.proxy.client",
#   "purpose": "HTTPX async client factory for relayed calls.",
#   "sections": [
#     {
#       "id": "create-ssl-context",
#       "name": "create_ssl_context",
#       "anchor": "function-create-ssl-context",
#       "kind": "function"
#     },
#     {
#       "id": "create-http-client",
#       "name": "create_http_client",
#       "anchor": "function-create-http-client",
#       "kind": "function"
#     }
#   ]
# }
# === /NAVMAP ===

"""HTTPX async client factory.

The relay shares one connection pool per engine.  The client is built with
the fixed dispatch policies every relayed call relies on:

- **Redirects**: never followed; a 3xx is reported to the caller as-is.
- **Timeouts**: none at client level; each request carries its own, and the
  dispatcher wraps the whole exchange in a hard deadline.
- **Environment**: ``trust_env`` is off so ambient proxy variables cannot
  reroute relayed traffic.
- **TLS**: certifi bundle with hostname verification unless disabled.
- **Hooks**: debug-level request/response telemetry.

Example:
    >>> from RequestRelay.settings import ProxySettings
    >>> client = create_http_client(ProxySettings())
    >>> # ... await client.aclose() at shutdown
"""

from __future__ import annotations

import logging
import ssl
import time
from typing import Optional

import certifi
import httpx

from RequestRelay.settings import ProxySettings

logger = logging.getLogger(__name__)


def create_ssl_context(verify: bool = True) -> ssl.SSLContext:
    """Create the TLS context for upstream connections.

    Args:
        verify: When ``False`` certificate and hostname checks are disabled
            (development only).
    """
    if not verify:
        ctx = ssl.create_default_context()
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE
        logger.warning("TLS verification DISABLED for relayed calls (development only!)")
        return ctx

    ctx = ssl.create_default_context(cafile=certifi.where())
    ctx.check_hostname = True
    ctx.verify_mode = ssl.CERT_REQUIRED
    return ctx


def create_http_client(
    settings: ProxySettings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """Create the shared async client.

    Args:
        settings: Proxy settings (pool limits, TLS verification).
        transport: Optional transport override; tests pass stub upstreams here.

    Returns:
        Configured ``httpx.AsyncClient``. The caller owns ``aclose()``.
    """
    limits = httpx.Limits(
        max_connections=settings.max_connections,
        max_keepalive_connections=settings.max_keepalive_connections,
        keepalive_expiry=settings.keepalive_expiry_sec,
    )
    if transport is None:
        transport = httpx.AsyncHTTPTransport(
            verify=create_ssl_context(settings.verify_tls),
            limits=limits,
        )

    client = httpx.AsyncClient(
        transport=transport,
        timeout=None,
        limits=limits,
        follow_redirects=False,
        trust_env=False,
        event_hooks={"request": [_on_request], "response": [_on_response]},
    )
    logger.debug(
        "HTTPX async client created",
        extra={
            "stage": "client",
            "extra_fields": {
                "max_connections": settings.max_connections,
                "verify_tls": settings.verify_tls,
            },
        },
    )
    return client


async def _on_request(request: httpx.Request) -> None:
    """Hook: stamp the request start time."""
    request.extensions["t0_perf"] = time.perf_counter()


async def _on_response(response: httpx.Response) -> None:
    """Hook: log method, host, status and time to headers."""
    request = response.request
    t0 = request.extensions.get("t0_perf", time.perf_counter())
    logger.debug(
        "upstream response",
        extra={
            "stage": "dispatch",
            "extra_fields": {
                "method": request.method,
                "host": request.url.host,
                "status": response.status_code,
                "ttfb_ms": round((time.perf_counter() - t0) * 1000.0, 2),
            },
        },
    )


__all__ = ["create_ssl_context", "create_http_client"]
