"""Persistence for request history and saved collections."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from .base import (
    DEFAULT_HISTORY_LIMIT,
    Collection,
    CollectionItem,
    CollectionStore,
    HistoryEntry,
    HistoryStore,
    RelayStore,
)
from .memory import InMemoryStore
from .sqlite import SQLiteStore


def open_store(db_path: Optional[Path] = None) -> RelayStore:
    """Return a SQLite store for ``db_path``, or an in-memory store when it is ``None``."""
    if db_path is None:
        return InMemoryStore()
    return SQLiteStore(Path(db_path))


__all__ = [
    "DEFAULT_HISTORY_LIMIT",
    "Collection",
    "CollectionItem",
    "CollectionStore",
    "RelayStore",
    "HistoryEntry",
    "HistoryStore",
    "InMemoryStore",
    "SQLiteStore",
    "open_store",
]
