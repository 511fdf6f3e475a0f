# === NAVMAP v1 ===
# {
#   "module": "RequestRelay.storage.sqlite",
#   "purpose": "SQLite-backed history and collection store",
#   "sections": [
#     {
#       "id": "sqlitestore",
#       "name": "SQLiteStore",
#       "anchor": "class-sqlitestore",
#       "kind": "class"
#     }
#   ]
# }
# === /NAVMAP ===

"""History and collection store backed by SQLite.

Key Design:
- One persistent connection in autocommit mode, shared across threads
  behind a lock
- ``PRAGMA journal_mode=WAL`` so ``relay history`` can read while a server writes
- Multi-statement mutations (cascade delete, item moves) run inside
  ``BEGIN IMMEDIATE`` transactions
- Headers are stored as JSON text; timestamps as epoch milliseconds

Typical Usage:
    from pathlib import Path
    from RequestRelay.storage import HistoryEntry, SQLiteStore

    store = SQLiteStore(Path("tmp/relay.sqlite"))
    entry_id = store.save(HistoryEntry(owner="alice", url="https://example.com", method="GET"))
    store.list("alice")
"""

from __future__ import annotations

import json
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional

from RequestRelay.errors import RecordNotFound, StorageError
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

# ────────────────────────────────────────────────────────────────────────────────
# Database Schema (DDL)
# ────────────────────────────────────────────────────────────────────────────────

_DDL = """
PRAGMA journal_mode=WAL;
PRAGMA synchronous=NORMAL;
PRAGMA busy_timeout=4000;
PRAGMA foreign_keys=ON;
CREATE TABLE IF NOT EXISTS history (
    id TEXT PRIMARY KEY,
    owner TEXT NOT NULL,
    url TEXT NOT NULL,
    method TEXT NOT NULL,
    headers TEXT NOT NULL,        -- JSON object
    body TEXT,
    response_status INTEGER,
    duration_ms INTEGER,
    created_at INTEGER NOT NULL   -- epoch milliseconds
);
CREATE INDEX IF NOT EXISTS idx_history_owner ON history(owner, created_at);
CREATE TABLE IF NOT EXISTS collections (
    id TEXT PRIMARY KEY,
    owner TEXT NOT NULL,
    name TEXT NOT NULL,
    description TEXT,
    color TEXT,
    created_at INTEGER NOT NULL,
    updated_at INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_collections_owner ON collections(owner, updated_at);
CREATE TABLE IF NOT EXISTS collection_items (
    id TEXT PRIMARY KEY,
    collection_id TEXT NOT NULL REFERENCES collections(id) ON DELETE CASCADE,
    owner TEXT NOT NULL,
    name TEXT NOT NULL,
    url TEXT NOT NULL,
    method TEXT NOT NULL,
    headers TEXT NOT NULL,
    body TEXT,
    description TEXT,
    created_at INTEGER NOT NULL,
    updated_at INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_items_collection ON collection_items(collection_id, updated_at)
"""

_HISTORY_COLUMNS = "id, owner, url, method, headers, body, response_status, duration_ms, created_at"
_COLLECTION_COLUMNS = "id, owner, name, description, color, created_at, updated_at"
_ITEM_COLUMNS = (
    "id, collection_id, owner, name, url, method, headers, body, description, created_at, updated_at"
)


def _history_from_row(row: sqlite3.Row) -> HistoryEntry:
    return HistoryEntry(
        id=row["id"],
        owner=row["owner"],
        url=row["url"],
        method=row["method"],
        headers=json.loads(row["headers"]),
        body=row["body"],
        response_status=row["response_status"],
        duration_ms=row["duration_ms"],
        created_at=row["created_at"],
    )


def _collection_from_row(row: sqlite3.Row, item_count: int = 0) -> Collection:
    return Collection(
        id=row["id"],
        owner=row["owner"],
        name=row["name"],
        description=row["description"],
        color=row["color"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        item_count=item_count,
    )


def _item_from_row(row: sqlite3.Row) -> CollectionItem:
    return CollectionItem(
        id=row["id"],
        collection_id=row["collection_id"],
        owner=row["owner"],
        name=row["name"],
        url=row["url"],
        method=row["method"],
        headers=json.loads(row["headers"]),
        body=row["body"],
        description=row["description"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


# ────────────────────────────────────────────────────────────────────────────────
# SQLiteStore
# ────────────────────────────────────────────────────────────────────────────────


@dataclass
class SQLiteStore:
    """
    History and collection store backed by one SQLite file.

    Parameters
    ----------
    db_path : Path
        Path to the database file. Parent directories are created if missing.
    clock : Callable[[], int]
        Returns the current time in epoch milliseconds; must be strictly
        increasing for deterministic ordering (default: :class:`MonotonicClock`).

    Raises
    ------
    StorageError
        If the database cannot be opened or a statement fails.
    """

    db_path: Path
    clock: Callable[[], int] = field(default_factory=MonotonicClock)

    def __post_init__(self) -> None:
        """Open the connection and create the schema if needed."""
        self.db_path = Path(self.db_path)
        self._lock = threading.RLock()
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(
                self.db_path,
                isolation_level=None,  # autocommit mode
                check_same_thread=False,
            )
            self._conn.row_factory = sqlite3.Row
            cursor = self._conn.cursor()
            for stmt in _DDL.strip().split(";\n"):
                if stmt.strip():
                    cursor.execute(stmt)
        except (OSError, sqlite3.Error) as exc:
            raise StorageError(f"Cannot open history database at {self.db_path}: {exc}") from exc

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                self._conn.execute("BEGIN IMMEDIATE")
                try:
                    yield self._conn
                except BaseException:
                    self._conn.execute("ROLLBACK")
                    raise
                self._conn.execute("COMMIT")
            except sqlite3.Error as exc:
                raise StorageError(f"History database error: {exc}") from exc

    @contextmanager
    def _reading(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                yield self._conn
            except sqlite3.Error as exc:
                raise StorageError(f"History database error: {exc}") from exc

    # ── HistoryStore API (Protocol) ─────────────────────────────────────────

    def save(self, entry: HistoryEntry) -> str:
        """
        Insert a history entry.

        Returns
        -------
        str
            Identifier of the new entry.
        """
        entry_id = new_record_id()
        with self._transaction() as conn:
            conn.execute(
                f"INSERT INTO history({_HISTORY_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    entry_id,
                    entry.owner,
                    entry.url,
                    entry.method,
                    json.dumps(dict(entry.headers)),
                    entry.body,
                    entry.response_status,
                    entry.duration_ms,
                    self.clock(),
                ),
            )
        return entry_id

    def list(self, owner: str, limit: int = DEFAULT_HISTORY_LIMIT) -> List[HistoryEntry]:
        """Return at most ``limit`` entries for ``owner``, newest first."""
        with self._reading() as conn:
            rows = conn.execute(
                f"SELECT {_HISTORY_COLUMNS} FROM history WHERE owner=? "
                "ORDER BY created_at DESC, rowid DESC LIMIT ?",
                (owner, max(0, int(limit))),
            ).fetchall()
        return [_history_from_row(row) for row in rows]

    def get(self, entry_id: str, owner: str) -> Optional[HistoryEntry]:
        with self._reading() as conn:
            row = conn.execute(
                f"SELECT {_HISTORY_COLUMNS} FROM history WHERE id=? AND owner=?",
                (entry_id, owner),
            ).fetchone()
        return _history_from_row(row) if row else None

    def delete(self, entry_id: str, owner: str) -> None:
        with self._transaction() as conn:
            cur = conn.execute("DELETE FROM history WHERE id=? AND owner=?", (entry_id, owner))
            if not cur.rowcount:
                raise RecordNotFound("History item", entry_id)

    def clear(self, owner: str) -> int:
        """
        Delete every history entry of ``owner``.

        Returns
        -------
        int
            Number of rows deleted.
        """
        with self._transaction() as conn:
            cur = conn.execute("DELETE FROM history WHERE owner=?", (owner,))
            return cur.rowcount or 0

    # ── CollectionStore API (Protocol) ──────────────────────────────────────

    def create_collection(
        self,
        owner: str,
        name: str,
        description: Optional[str] = None,
        color: Optional[str] = None,
    ) -> Collection:
        now = self.clock()
        collection = Collection(
            id=new_record_id(),
            owner=owner,
            name=name,
            description=description,
            color=color,
            created_at=now,
            updated_at=now,
        )
        with self._transaction() as conn:
            conn.execute(
                f"INSERT INTO collections({_COLLECTION_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?)",
                (collection.id, owner, name, description, color, now, now),
            )
        return collection

    def list_collections(self, owner: str) -> List[Collection]:
        """Return collections with item counts, most recently updated first."""
        with self._reading() as conn:
            rows = conn.execute(
                """
                SELECT c.id, c.owner, c.name, c.description, c.color, c.created_at, c.updated_at,
                       COUNT(i.id) AS item_count
                FROM collections c
                LEFT JOIN collection_items i ON i.collection_id = c.id
                WHERE c.owner=?
                GROUP BY c.id
                ORDER BY c.updated_at DESC, c.rowid DESC
                """,
                (owner,),
            ).fetchall()
        return [_collection_from_row(row, row["item_count"]) for row in rows]

    def update_collection(self, collection_id: str, owner: str, **changes: Any) -> Collection:
        """
        Apply a partial update and bump ``updated_at``.

        Raises
        ------
        RecordNotFound
            If the collection is absent or owned by someone else.
        """
        updates = check_changes(changes, COLLECTION_FIELDS, "collection")
        updates["updated_at"] = self.clock()
        assignments = ", ".join(f"{column}=?" for column in updates)
        with self._transaction() as conn:
            cur = conn.execute(
                f"UPDATE collections SET {assignments} WHERE id=? AND owner=?",
                (*updates.values(), collection_id, owner),
            )
            if not cur.rowcount:
                raise RecordNotFound("Collection", collection_id)
            row = conn.execute(
                f"SELECT {_COLLECTION_COLUMNS} FROM collections WHERE id=?", (collection_id,)
            ).fetchone()
        return _collection_from_row(row)

    def delete_collection(self, collection_id: str, owner: str) -> int:
        """
        Delete a collection and its items.

        Returns
        -------
        int
            Number of items removed with the collection.
        """
        with self._transaction() as conn:
            self._require_collection(conn, collection_id, owner)
            cur = conn.execute("DELETE FROM collection_items WHERE collection_id=?", (collection_id,))
            removed = cur.rowcount or 0
            conn.execute("DELETE FROM collections WHERE id=?", (collection_id,))
        return removed

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
        with self._transaction() as conn:
            self._require_collection(conn, collection_id, owner)
            now = self.clock()
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
            conn.execute(
                f"INSERT INTO collection_items({_ITEM_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    item.id,
                    collection_id,
                    owner,
                    name,
                    url,
                    method,
                    json.dumps(item.headers),
                    body,
                    description,
                    now,
                    now,
                ),
            )
            conn.execute("UPDATE collections SET updated_at=? WHERE id=?", (now, collection_id))
        return item

    def list_items(self, collection_id: str, owner: str) -> List[CollectionItem]:
        with self._reading() as conn:
            self._require_collection(conn, collection_id, owner)
            rows = conn.execute(
                f"SELECT {_ITEM_COLUMNS} FROM collection_items WHERE collection_id=? "
                "ORDER BY updated_at DESC, rowid DESC",
                (collection_id,),
            ).fetchall()
        return [_item_from_row(row) for row in rows]

    def update_item(self, item_id: str, owner: str, **changes: Any) -> CollectionItem:
        updates = check_changes(changes, ITEM_FIELDS, "item")
        if "headers" in updates:
            updates["headers"] = json.dumps(dict(updates["headers"]))
        with self._transaction() as conn:
            item = self._require_item(conn, item_id, owner)
            now = self.clock()
            updates["updated_at"] = now
            assignments = ", ".join(f"{column}=?" for column in updates)
            conn.execute(
                f"UPDATE collection_items SET {assignments} WHERE id=?",
                (*updates.values(), item_id),
            )
            conn.execute(
                "UPDATE collections SET updated_at=? WHERE id=?", (now, item.collection_id)
            )
            row = conn.execute(
                f"SELECT {_ITEM_COLUMNS} FROM collection_items WHERE id=?", (item_id,)
            ).fetchone()
        return _item_from_row(row)

    def remove_item(self, item_id: str, owner: str) -> None:
        with self._transaction() as conn:
            cur = conn.execute(
                "DELETE FROM collection_items WHERE id=? AND owner=?", (item_id, owner)
            )
            if not cur.rowcount:
                raise RecordNotFound("Collection item", item_id)

    def move_item(self, item_id: str, new_collection_id: str, owner: str) -> CollectionItem:
        """
        Move an item to another collection of the same owner.

        Both the source and destination collections have ``updated_at`` bumped.
        """
        with self._transaction() as conn:
            item = self._require_item(conn, item_id, owner)
            self._require_collection(conn, new_collection_id, owner, kind="New collection")
            now = self.clock()
            conn.execute(
                "UPDATE collection_items SET collection_id=?, updated_at=? WHERE id=?",
                (new_collection_id, now, item_id),
            )
            conn.execute(
                "UPDATE collections SET updated_at=? WHERE id IN (?, ?)",
                (now, new_collection_id, item.collection_id),
            )
            row = conn.execute(
                f"SELECT {_ITEM_COLUMNS} FROM collection_items WHERE id=?", (item_id,)
            ).fetchone()
        return _item_from_row(row)

    # ── Internals ───────────────────────────────────────────────────────────

    @staticmethod
    def _require_collection(
        conn: sqlite3.Connection, collection_id: str, owner: str, kind: str = "Collection"
    ) -> None:
        row = conn.execute(
            "SELECT 1 FROM collections WHERE id=? AND owner=?", (collection_id, owner)
        ).fetchone()
        if row is None:
            raise RecordNotFound(kind, collection_id)

    @staticmethod
    def _require_item(conn: sqlite3.Connection, item_id: str, owner: str) -> CollectionItem:
        row = conn.execute(
            f"SELECT {_ITEM_COLUMNS} FROM collection_items WHERE id=? AND owner=?",
            (item_id, owner),
        ).fetchone()
        if row is None:
            raise RecordNotFound("Collection item", item_id)
        return _item_from_row(row)

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._conn.close()


__all__ = ["SQLiteStore"]
