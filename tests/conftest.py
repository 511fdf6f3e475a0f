# === NAVMAP v1 ===
# {
#   "module": "tests.conftest",
#   "purpose": "Shared pytest fixtures for suite",
#   "sections": [
#     {
#       "id": "isolated-environment",
#       "name": "isolated_environment",
#       "anchor": "function-isolated-environment",
#       "kind": "fixture"
#     },
#     {
#       "id": "make-settings",
#       "name": "make_settings",
#       "anchor": "function-make-settings",
#       "kind": "fixture"
#     },
#     {
#       "id": "make-engine",
#       "name": "make_engine",
#       "anchor": "function-make-engine",
#       "kind": "fixture"
#     }
#   ]
# }
# === /NAVMAP ===

"""
Pytest Configuration

Shared fixtures for the relay suite: an environment scrubbed of ``RELAY_*``
overrides, settings and engine factories wired to stub upstreams, and the
anyio backend selection used by every async test.

Usage:
    pytest -q
"""

from __future__ import annotations

import os
from typing import Any, AsyncIterator, Callable, Dict, Optional

import httpx
import pytest

from RequestRelay.proxy.engine import ProxyEngine
from RequestRelay.settings import RelaySettings, invalidate_settings_cache, load_settings

# Stub upstream fixtures
from tests.fixtures.http_mocking import (  # noqa: F401
    http_mock,
    stub_upstream,
)


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch: pytest.MonkeyPatch):
    """Strip ``RELAY_*`` variables and reset the cached settings around each test."""
    for name in list(os.environ):
        if name.upper().startswith("RELAY_"):
            monkeypatch.delenv(name, raising=False)
    invalidate_settings_cache()
    yield
    invalidate_settings_cache()


@pytest.fixture
def make_settings() -> Callable[..., RelaySettings]:
    """Build settings from keyword overrides without reading the environment.

    Example:
        settings = make_settings(environment="production", proxy={"max_response_bytes": 1024})
    """

    def _make(**raw: Any) -> RelaySettings:
        return load_settings(raw, apply_env=False)

    return _make


@pytest.fixture
async def make_engine(
    anyio_backend: str,
    make_settings: Callable[..., RelaySettings],
) -> AsyncIterator[Callable[..., ProxyEngine]]:
    """Create engines bound to a stub transport; all are closed at teardown."""
    engines = []

    def _make(
        transport: httpx.AsyncBaseTransport,
        settings: Optional[RelaySettings] = None,
        **settings_raw: Dict[str, Any],
    ) -> ProxyEngine:
        engine = ProxyEngine(settings or make_settings(**settings_raw), transport=transport)
        engines.append(engine)
        return engine

    yield _make
    for engine in engines:
        await engine.aclose()
