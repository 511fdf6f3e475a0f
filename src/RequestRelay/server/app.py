# === NAVMAP v1 ===
# {
#   "module": "RequestRelay.server.app",
#   "purpose": "FastAPI surface over the relay engine and the history/collection store",
#   "sections": [
#     {"id": "models", "name": "Request models", "anchor": "MOD", "kind": "api"},
#     {"id": "create-app", "name": "create_app", "anchor": "function-create-app", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""HTTP surface for the relay.

Routes:

- ``GET /api/health``: liveness probe
- ``POST /api/proxy``: relay one request; the result payload is returned
  with HTTP 200 for exchanged calls and with the failure's own status
  otherwise
- ``/api/history`` and ``/api/collections``: owner-scoped storage, keyed by
  the trusted ``X-Owner-Key`` header
- ``/metrics``: Prometheus exposition

Relay errors raised by the store (missing owner key, unknown record) map to
``{"error", "code"}`` bodies with their own status.  Anything unexpected is
answered by a 500 whose message is redacted outside development.
"""

from __future__ import annotations

import json
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, List, Optional

from fastapi import Depends, FastAPI, Header, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app
from pydantic import BaseModel, ConfigDict, Field

from RequestRelay import __version__
from RequestRelay.errors import (
    GENERIC_INTERNAL_MESSAGE,
    ErrorCode,
    InputError,
    RecordNotFound,
    RelayError,
)
from RequestRelay.proxy.dispatcher import elapsed_ms
from RequestRelay.proxy.engine import ProxyEngine
from RequestRelay.proxy.types import TransportFailure
from RequestRelay.settings import RelaySettings, get_env_overrides, get_settings
from RequestRelay.storage import DEFAULT_HISTORY_LIMIT, RelayStore, open_store

logger = logging.getLogger(__name__)

OWNER_HEADER = "X-Owner-Key"
PROXY_PATH = "/api/proxy"

# ============================================================================
# Request models
# ============================================================================


class CollectionCreate(BaseModel):
    name: str = Field(min_length=1)
    description: Optional[str] = None
    color: Optional[str] = None


class CollectionUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    color: Optional[str] = None


class ItemCreate(BaseModel):
    name: str = Field(min_length=1)
    url: str = Field(min_length=1)
    method: str = Field(min_length=1)
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Optional[str] = None
    description: Optional[str] = None


class ItemUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    url: Optional[str] = Field(default=None, min_length=1)
    method: Optional[str] = Field(default=None, min_length=1)
    headers: Optional[Dict[str, str]] = None
    body: Optional[str] = None
    description: Optional[str] = None


class ItemMove(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    collection_id: str = Field(alias="collectionId", min_length=1)


def _error_body(message: str, code: ErrorCode) -> Dict[str, Any]:
    return {"error": message, "code": code.value}


def _failure_response(started: float, http_status: int, message: str, code: ErrorCode) -> JSONResponse:
    """Result-shaped answer for a relay call rejected before the engine ran."""
    failure = TransportFailure(
        http_status=http_status, error=message, code=code, duration_ms=elapsed_ms(started)
    )
    return JSONResponse(failure.to_payload(), status_code=http_status)


def require_owner(x_owner_key: Optional[str] = Header(default=None, alias=OWNER_HEADER)) -> str:
    """Dependency: the caller's owner key, required on storage routes."""
    if x_owner_key is None or not x_owner_key.strip():
        raise InputError(f"{OWNER_HEADER} header is required")
    return x_owner_key.strip()


def create_app(
    settings: Optional[RelaySettings] = None,
    engine: Optional[ProxyEngine] = None,
    store: Optional[RelayStore] = None,
) -> FastAPI:
    """Build the FastAPI application.

    Args:
        settings: Relay settings; defaults to :func:`get_settings`.
        engine: Pre-built engine (tests inject one with a stub transport).
            When omitted the app creates one and closes it on shutdown.
        store: History/collection store; defaults to :func:`open_store` on
            ``settings.db_path``.
    """
    settings = settings or get_settings()
    owns_store = store is None
    store = store if store is not None else open_store(settings.db_path)
    owns_engine = engine is None
    engine = engine or ProxyEngine(settings, history=store)
    if engine.history is None:
        engine.history = store

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        logger.info(
            "RequestRelay server starting",
            extra={
                "stage": "server",
                "extra_fields": {
                    "environment": settings.environment,
                    "restricted_egress": settings.restricted_egress,
                    "config_hash": settings.config_hash(),
                    "env_overrides": sorted(get_env_overrides()),
                },
            },
        )
        try:
            yield
        finally:
            if owns_engine:
                await engine.aclose()
            if owns_store:
                store.close()

    app = FastAPI(
        title="RequestRelay",
        description="Relay arbitrary HTTP requests and normalize the responses.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.engine = engine
    app.state.store = store

    if settings.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_origins,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    max_request_bytes = settings.proxy.max_request_bytes
    too_large_message = f"Request body exceeds maximum size of {max_request_bytes} bytes"

    @app.middleware("http")
    async def limit_request_size(request: Request, call_next):
        started = time.perf_counter()
        declared = request.headers.get("content-length")
        if declared is not None and declared.isdigit() and int(declared) > max_request_bytes:
            if request.url.path == PROXY_PATH:
                return _failure_response(
                    started, status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, too_large_message, ErrorCode.E_BODY_TOO_LARGE
                )
            return JSONResponse(
                _error_body(too_large_message, ErrorCode.E_BODY_TOO_LARGE),
                status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            )
        return await call_next(request)

    @app.exception_handler(RelayError)
    async def relay_error_handler(_: Request, exc: RelayError) -> JSONResponse:
        return JSONResponse(_error_body(exc.message, exc.code), status_code=exc.http_status)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
        messages = []
        for error in exc.errors():
            location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
            messages.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
        return JSONResponse(
            _error_body("; ".join(messages) or "Invalid request", ErrorCode.E_INPUT),
            status_code=status.HTTP_400_BAD_REQUEST,
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "Unhandled server error",
            exc_info=exc,
            extra={"stage": "server", "extra_fields": {"path": request.url.path}},
        )
        message = (str(exc) or GENERIC_INTERNAL_MESSAGE) if settings.is_development else GENERIC_INTERNAL_MESSAGE
        return JSONResponse(
            _error_body(message, ErrorCode.E_INTERNAL),
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    app.mount("/metrics", make_asgi_app())

    # ── Relay ───────────────────────────────────────────────────────────────

    @app.get("/api/health")
    async def health() -> Dict[str, str]:
        return {
            "status": "OK",
            "message": "RequestRelay is running",
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        }

    @app.post(PROXY_PATH)
    async def proxy(
        request: Request,
        x_owner_key: Optional[str] = Header(default=None, alias=OWNER_HEADER),
    ) -> JSONResponse:
        started = time.perf_counter()
        # Chunked uploads carry no Content-Length, so count while reading.
        chunks: List[bytes] = []
        received = 0
        async for chunk in request.stream():
            received += len(chunk)
            if received > max_request_bytes:
                return _failure_response(
                    started, status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, too_large_message, ErrorCode.E_BODY_TOO_LARGE
                )
            chunks.append(chunk)
        raw = b"".join(chunks)
        try:
            payload = json.loads(raw) if raw else None
        except ValueError:
            return _failure_response(
                started, status.HTTP_400_BAD_REQUEST, "Request body must be valid JSON", ErrorCode.E_INPUT
            )

        owner = x_owner_key.strip() if x_owner_key and x_owner_key.strip() else None
        result = await engine.execute(payload, owner=owner, started=started)
        status_code = result.http_status if isinstance(result, TransportFailure) else status.HTTP_200_OK
        return JSONResponse(result.to_payload(), status_code=status_code)

    # ── History ─────────────────────────────────────────────────────────────

    @app.get("/api/history")
    def list_history(
        owner: str = Depends(require_owner),
        limit: int = Query(default=DEFAULT_HISTORY_LIMIT, ge=1, le=1000),
    ) -> List[Dict[str, Any]]:
        return [entry.to_payload() for entry in store.list(owner, limit=limit)]

    @app.delete("/api/history")
    def clear_history(owner: str = Depends(require_owner)) -> Dict[str, int]:
        return {"deletedCount": store.clear(owner)}

    @app.get("/api/history/{entry_id}")
    def get_history_item(entry_id: str, owner: str = Depends(require_owner)) -> Dict[str, Any]:
        entry = store.get(entry_id, owner)
        if entry is None:
            raise RecordNotFound("History item", entry_id)
        return entry.to_payload()

    @app.delete("/api/history/{entry_id}")
    def delete_history_item(entry_id: str, owner: str = Depends(require_owner)) -> Dict[str, bool]:
        store.delete(entry_id, owner)
        return {"deleted": True}

    # ── Collections ─────────────────────────────────────────────────────────

    @app.get("/api/collections")
    def list_collections(owner: str = Depends(require_owner)) -> List[Dict[str, Any]]:
        return [collection.to_payload() for collection in store.list_collections(owner)]

    @app.post("/api/collections", status_code=status.HTTP_201_CREATED)
    def create_collection(body: CollectionCreate, owner: str = Depends(require_owner)) -> Dict[str, Any]:
        collection = store.create_collection(
            owner, body.name, description=body.description, color=body.color
        )
        return collection.to_payload()

    @app.patch("/api/collections/{collection_id}")
    def update_collection(
        collection_id: str, body: CollectionUpdate, owner: str = Depends(require_owner)
    ) -> Dict[str, Any]:
        changes = body.model_dump(exclude_unset=True)
        return store.update_collection(collection_id, owner, **changes).to_payload()

    @app.delete("/api/collections/{collection_id}")
    def delete_collection(collection_id: str, owner: str = Depends(require_owner)) -> Dict[str, Any]:
        removed = store.delete_collection(collection_id, owner)
        return {"deletedCollection": True, "deletedItems": removed}

    @app.get("/api/collections/{collection_id}/items")
    def list_items(collection_id: str, owner: str = Depends(require_owner)) -> List[Dict[str, Any]]:
        return [item.to_payload() for item in store.list_items(collection_id, owner)]

    @app.post("/api/collections/{collection_id}/items", status_code=status.HTTP_201_CREATED)
    def add_item(
        collection_id: str, body: ItemCreate, owner: str = Depends(require_owner)
    ) -> Dict[str, Any]:
        item = store.add_item(collection_id, owner, **body.model_dump())
        return item.to_payload()

    @app.patch("/api/items/{item_id}")
    def update_item(item_id: str, body: ItemUpdate, owner: str = Depends(require_owner)) -> Dict[str, Any]:
        changes = body.model_dump(exclude_unset=True)
        return store.update_item(item_id, owner, **changes).to_payload()

    @app.delete("/api/items/{item_id}")
    def remove_item(item_id: str, owner: str = Depends(require_owner)) -> Dict[str, bool]:
        store.remove_item(item_id, owner)
        return {"deleted": True}

    @app.post("/api/items/{item_id}/move")
    def move_item(item_id: str, body: ItemMove, owner: str = Depends(require_owner)) -> Dict[str, Any]:
        return store.move_item(item_id, body.collection_id, owner).to_payload()

    return app


__all__ = ["create_app", "require_owner", "OWNER_HEADER"]
