"""Relay arbitrary outbound HTTP requests and normalize what comes back.

The :class:`~RequestRelay.proxy.engine.ProxyEngine` validates a caller's
request spec, applies the egress policy, sanitizes headers, dispatches the
call with bounded time and size, and returns one of three result shapes.
History and collection storage, the HTTP surface and the CLI are built
around that engine.
"""

from __future__ import annotations

from importlib import import_module
from typing import Any

__version__ = "0.1.0"

_LAZY_EXPORTS = {
    "ProxyEngine": "RequestRelay.proxy.engine",
    "RelaySettings": "RequestRelay.settings",
    "load_settings": "RequestRelay.settings",
    "get_settings": "RequestRelay.settings",
}

__all__ = ["__version__", *_LAZY_EXPORTS]


def __getattr__(name: str) -> Any:
    """Resolve public exports lazily to keep ``import RequestRelay`` cheap."""

    module_name = _LAZY_EXPORTS.get(name)
    if module_name is None:
        raise AttributeError(f"module 'RequestRelay' has no attribute {name!r}")
    value = getattr(import_module(module_name), name)
    globals()[name] = value
    return value


def __dir__() -> list[str]:
    return sorted(set(globals()) | set(__all__))
