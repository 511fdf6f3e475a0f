"""Record types and storage protocols for history and collections.

Every read and mutation is scoped by an opaque owner key.  A record that is
absent and a record owned by someone else are indistinguishable to callers:
both raise :class:`~RequestRelay.errors.RecordNotFound` (``get`` returns
``None`` instead).
"""

from __future__ import annotations

import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from RequestRelay.errors import InputError

#: Default page size for :meth:`HistoryStore.list`
DEFAULT_HISTORY_LIMIT = 50

#: Collection fields accepted by ``update_collection``
COLLECTION_FIELDS = frozenset({"name", "description", "color"})

#: Item fields accepted by ``update_item``
ITEM_FIELDS = frozenset({"name", "url", "method", "headers", "body", "description"})


def new_record_id() -> str:
    return uuid.uuid4().hex


class MonotonicClock:
    """Millisecond wall clock that never returns the same value twice.

    Ordering by ``created_at``/``updated_at`` stays total even when several
    writes land within one millisecond.
    """

    def __init__(self) -> None:
        self._last = 0
        self._lock = threading.Lock()

    def __call__(self) -> int:
        with self._lock:
            now = max(int(time.time() * 1000), self._last + 1)
            self._last = now
            return now


def check_changes(changes: Dict[str, Any], allowed: frozenset, kind: str) -> Dict[str, Any]:
    """Drop ``None`` values and reject unknown fields of a partial update."""
    unknown = sorted(set(changes) - allowed)
    if unknown:
        raise InputError(f"Unknown {kind} field(s): {', '.join(unknown)}")
    return {key: value for key, value in changes.items() if value is not None}


@dataclass(frozen=True, slots=True)
class HistoryEntry:
    """One relayed call as remembered for its owner."""

    owner: str
    url: str
    method: str
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[str] = None
    response_status: Optional[int] = None
    duration_ms: Optional[int] = None
    id: Optional[str] = None
    created_at: Optional[int] = None

    def to_payload(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "url": self.url,
            "method": self.method,
            "headers": dict(self.headers),
            "body": self.body,
            "responseStatus": self.response_status,
            "durationMs": self.duration_ms,
            "createdAt": self.created_at,
        }


@dataclass(frozen=True, slots=True)
class Collection:
    """Named group of saved requests."""

    id: str
    owner: str
    name: str
    description: Optional[str]
    color: Optional[str]
    created_at: int
    updated_at: int
    item_count: int = 0

    def to_payload(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "color": self.color,
            "itemCount": self.item_count,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


@dataclass(frozen=True, slots=True)
class CollectionItem:
    """Saved request inside a collection."""

    id: str
    collection_id: str
    owner: str
    name: str
    url: str
    method: str
    headers: Dict[str, str]
    body: Optional[str]
    description: Optional[str]
    created_at: int
    updated_at: int

    def to_payload(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "collectionId": self.collection_id,
            "name": self.name,
            "url": self.url,
            "method": self.method,
            "headers": dict(self.headers),
            "body": self.body,
            "description": self.description,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


@runtime_checkable
class HistoryStore(Protocol):
    """Per-owner log of relayed calls."""

    def save(self, entry: HistoryEntry) -> str:
        """Persist ``entry`` and return its new id."""
        ...

    def list(self, owner: str, limit: int = DEFAULT_HISTORY_LIMIT) -> List[HistoryEntry]:
        """Return at most ``limit`` entries, newest first."""
        ...

    def get(self, entry_id: str, owner: str) -> Optional[HistoryEntry]: ...

    def delete(self, entry_id: str, owner: str) -> None: ...

    def clear(self, owner: str) -> int:
        """Delete every entry of ``owner`` and return how many were removed."""
        ...


@runtime_checkable
class CollectionStore(Protocol):
    """Per-owner collections of saved requests."""

    def create_collection(
        self,
        owner: str,
        name: str,
        description: Optional[str] = None,
        color: Optional[str] = None,
    ) -> Collection: ...

    def list_collections(self, owner: str) -> List[Collection]:
        """Return the owner's collections, most recently updated first."""
        ...

    def update_collection(self, collection_id: str, owner: str, **changes: Any) -> Collection: ...

    def delete_collection(self, collection_id: str, owner: str) -> int:
        """Delete a collection with its items; return the number of items removed."""
        ...

    def add_item(
        self,
        collection_id: str,
        owner: str,
        *,
        name: str,
        url: str,
        method: str,
        headers: Optional[Dict[str, str]] = None,
        body: Optional[str] = None,
        description: Optional[str] = None,
    ) -> CollectionItem: ...

    def list_items(self, collection_id: str, owner: str) -> List[CollectionItem]: ...

    def update_item(self, item_id: str, owner: str, **changes: Any) -> CollectionItem: ...

    def remove_item(self, item_id: str, owner: str) -> None: ...

    def move_item(self, item_id: str, new_collection_id: str, owner: str) -> CollectionItem: ...


@runtime_checkable
class RelayStore(HistoryStore, CollectionStore, Protocol):
    """Both stores behind one object, as the server and CLI expect."""

    def close(self) -> None: ...


__all__ = [
    "DEFAULT_HISTORY_LIMIT",
    "COLLECTION_FIELDS",
    "ITEM_FIELDS",
    "MonotonicClock",
    "check_changes",
    "new_record_id",
    "HistoryEntry",
    "Collection",
    "CollectionItem",
    "HistoryStore",
    "CollectionStore",
    "RelayStore",
]
