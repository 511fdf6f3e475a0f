"""In-process store for history and collections.

Used by default when no database path is configured, and by the tests.
State lives in dictionaries guarded by one lock; nothing survives the process.
"""

from __future__ import annotations

import dataclasses
import threading
from typing import Any, Callable, Dict, List, Optional

from RequestRelay.errors import RecordNotFound
from RequestRelay.storage.base import (
    COLLECTION_FIELDS,
    DEFAULT_HISTORY_LIMIT,
    ITEM_FIELDS,
    Collection,
    CollectionItem,
    HistoryEntry,
    MonotonicClock,
    check_changes,
    new_record_id,
)


class InMemoryStore:
    """Dictionary-backed :class:`HistoryStore` and :class:`CollectionStore`."""

    def __init__(self, clock: Optional[Callable[[], int]] = None) -> None:
        self._clock = clock or MonotonicClock()
        self._lock = threading.Lock()
        self._history: Dict[str, HistoryEntry] = {}
        self._collections: Dict[str, Collection] = {}
        self._items: Dict[str, CollectionItem] = {}

    # ── History ──────────────────────────────────────────────────────────────

    def save(self, entry: HistoryEntry) -> str:
        entry_id = new_record_id()
        with self._lock:
            self._history[entry_id] = dataclasses.replace(
                entry, id=entry_id, created_at=self._clock(), headers=dict(entry.headers)
            )
        return entry_id

    def list(self, owner: str, limit: int = DEFAULT_HISTORY_LIMIT) -> List[HistoryEntry]:
        with self._lock:
            entries = [entry for entry in self._history.values() if entry.owner == owner]
        entries.sort(key=lambda entry: entry.created_at or 0, reverse=True)
        return entries[: max(0, limit)]

    def get(self, entry_id: str, owner: str) -> Optional[HistoryEntry]:
        with self._lock:
            entry = self._history.get(entry_id)
        if entry is None or entry.owner != owner:
            return None
        return entry

    def delete(self, entry_id: str, owner: str) -> None:
        with self._lock:
            entry = self._history.get(entry_id)
            if entry is None or entry.owner != owner:
                raise RecordNotFound("History item", entry_id)
            del self._history[entry_id]

    def clear(self, owner: str) -> int:
        with self._lock:
            doomed = [key for key, entry in self._history.items() if entry.owner == owner]
            for key in doomed:
                del self._history[key]
        return len(doomed)

    # ── Collections ──────────────────────────────────────────────────────────

    def create_collection(
        self,
        owner: str,
        name: str,
        description: Optional[str] = None,
        color: Optional[str] = None,
    ) -> Collection:
        now = self._clock()
        collection = Collection(
            id=new_record_id(),
            owner=owner,
            name=name,
            description=description,
            color=color,
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            self._collections[collection.id] = collection
        return collection

    def list_collections(self, owner: str) -> List[Collection]:
        with self._lock:
            counts: Dict[str, int] = {}
            for item in self._items.values():
                counts[item.collection_id] = counts.get(item.collection_id, 0) + 1
            result = [
                dataclasses.replace(collection, item_count=counts.get(collection.id, 0))
                for collection in self._collections.values()
                if collection.owner == owner
            ]
        result.sort(key=lambda collection: collection.updated_at, reverse=True)
        return result

    def update_collection(self, collection_id: str, owner: str, **changes: Any) -> Collection:
        updates = check_changes(changes, COLLECTION_FIELDS, "collection")
        with self._lock:
            collection = self._owned_collection(collection_id, owner)
            updated = dataclasses.replace(collection, updated_at=self._clock(), **updates)
            self._collections[collection_id] = updated
        return updated

    def delete_collection(self, collection_id: str, owner: str) -> int:
        with self._lock:
            self._owned_collection(collection_id, owner)
            doomed = [key for key, item in self._items.items() if item.collection_id == collection_id]
            for key in doomed:
                del self._items[key]
            del self._collections[collection_id]
        return len(doomed)

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
    ) -> CollectionItem:
        with self._lock:
            self._owned_collection(collection_id, owner)
            now = self._clock()
            item = CollectionItem(
                id=new_record_id(),
                collection_id=collection_id,
                owner=owner,
                name=name,
                url=url,
                method=method,
                headers=dict(headers or {}),
                body=body,
                description=description,
                created_at=now,
                updated_at=now,
            )
            self._items[item.id] = item
            self._touch(collection_id, now)
        return item

    def list_items(self, collection_id: str, owner: str) -> List[CollectionItem]:
        with self._lock:
            self._owned_collection(collection_id, owner)
            items = [item for item in self._items.values() if item.collection_id == collection_id]
        items.sort(key=lambda item: item.updated_at, reverse=True)
        return items

    def update_item(self, item_id: str, owner: str, **changes: Any) -> CollectionItem:
        updates = check_changes(changes, ITEM_FIELDS, "item")
        if "headers" in updates:
            updates["headers"] = dict(updates["headers"])
        with self._lock:
            item = self._owned_item(item_id, owner)
            now = self._clock()
            updated = dataclasses.replace(item, updated_at=now, **updates)
            self._items[item_id] = updated
            self._touch(item.collection_id, now)
        return updated

    def remove_item(self, item_id: str, owner: str) -> None:
        with self._lock:
            self._owned_item(item_id, owner)
            del self._items[item_id]

    def move_item(self, item_id: str, new_collection_id: str, owner: str) -> CollectionItem:
        with self._lock:
            item = self._owned_item(item_id, owner)
            self._owned_collection(new_collection_id, owner, kind="New collection")
            now = self._clock()
            moved = dataclasses.replace(item, collection_id=new_collection_id, updated_at=now)
            self._items[item_id] = moved
            self._touch(new_collection_id, now)
            self._touch(item.collection_id, now)
        return moved

    # ── Internals (caller holds the lock) ────────────────────────────────────

    def _owned_collection(self, collection_id: str, owner: str, kind: str = "Collection") -> Collection:
        collection = self._collections.get(collection_id)
        if collection is None or collection.owner != owner:
            raise RecordNotFound(kind, collection_id)
        return collection

    def _owned_item(self, item_id: str, owner: str) -> CollectionItem:
        item = self._items.get(item_id)
        if item is None or item.owner != owner:
            raise RecordNotFound("Collection item", item_id)
        return item

    def _touch(self, collection_id: str, now: int) -> None:
        collection = self._collections.get(collection_id)
        if collection is not None:
            self._collections[collection_id] = dataclasses.replace(collection, updated_at=now)

    def close(self) -> None:
        """No resources to release."""


__all__ = ["InMemoryStore"]
