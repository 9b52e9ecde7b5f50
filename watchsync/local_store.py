"""
Durable local store using SQLite.

Holds three things that must survive restarts while offline:

- a mirror of the last known full item collection (per namespace)
- the ordered queue of not-yet-acknowledged mutations
- small response caches (keyed by namespace + item id)

The queue uses an AUTOINCREMENT primary key, so listing in id order is
listing in enqueue order.
"""

import json
import logging
import sqlite3
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from .actions import QueuedAction, action_from_row
from .types import WatchlistItem

logger = logging.getLogger(__name__)

MIRROR_NAMESPACE = "watchlist"

# Cache namespaces
UPDATES_CACHE = "updates"
DISCOVERY_CACHE = "discovery"

# Cached responses older than this are stale
CACHE_MAX_AGE_SECONDS = 24 * 60 * 60


@dataclass
class CacheEntry:
    """A cached response and when it was stored (epoch seconds)."""
    key: str
    data: Any
    timestamp: float

    def age(self) -> float:
        return time.time() - self.timestamp


class LocalStore:
    """
    SQLite-backed durable store for the item mirror, action queue and caches.

    All writes commit immediately. A single connection is shared and
    guarded by a lock.
    """

    def __init__(self, db_path: Path):
        """
        Args:
            db_path: Path to SQLite database file
        """
        self._db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()
        self._init_db()

    def _init_db(self) -> None:
        """Initialize the SQLite database."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._db_path), check_same_thread=False)

        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA busy_timeout=5000")

        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS items (
                namespace TEXT NOT NULL,
                id TEXT NOT NULL,
                position INTEGER NOT NULL,
                data TEXT NOT NULL,
                PRIMARY KEY (namespace, id)
            )
        """)
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS sync_queue (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                kind TEXT NOT NULL,
                payload TEXT NOT NULL,
                timestamp REAL NOT NULL
            )
        """)
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS response_cache (
                namespace TEXT NOT NULL,
                key TEXT NOT NULL,
                data TEXT NOT NULL,
                timestamp REAL NOT NULL,
                PRIMARY KEY (namespace, key)
            )
        """)
        self._conn.commit()

    # -------------------------------------------------------------------------
    # Item mirror
    # -------------------------------------------------------------------------

    def put_all(
        self, items: list[WatchlistItem], namespace: str = MIRROR_NAMESPACE
    ) -> None:
        """Replace the full contents of a namespace, preserving list order."""
        rows = [
            (namespace, item.id, position, json.dumps(item.to_dict(), ensure_ascii=False))
            for position, item in enumerate(items)
        ]
        with self._lock:
            try:
                self._conn.execute("DELETE FROM items WHERE namespace = ?", (namespace,))
                self._conn.executemany(
                    "INSERT OR REPLACE INTO items (namespace, id, position, data) "
                    "VALUES (?, ?, ?, ?)",
                    rows,
                )
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise
        logger.debug("Saved %d items to local mirror %s", len(rows), namespace)

    def get_all(self, namespace: str = MIRROR_NAMESPACE) -> list[WatchlistItem]:
        """Load a namespace in stored order."""
        with self._lock:
            cursor = self._conn.execute(
                "SELECT data FROM items WHERE namespace = ? ORDER BY position ASC",
                (namespace,),
            )
            rows = cursor.fetchall()
        return [WatchlistItem.from_dict(json.loads(row[0])) for row in rows]

    def clear(self, namespace: str = MIRROR_NAMESPACE) -> None:
        """Remove every item in a namespace."""
        with self._lock:
            self._conn.execute("DELETE FROM items WHERE namespace = ?", (namespace,))
            self._conn.commit()

    # -------------------------------------------------------------------------
    # Action queue
    # -------------------------------------------------------------------------

    def append(self, action: QueuedAction) -> QueuedAction:
        """Add an action at the tail of the queue.

        Assigns the local sequence id and enqueue timestamp on the action.
        """
        action.timestamp = time.time()
        with self._lock:
            cursor = self._conn.execute(
                "INSERT INTO sync_queue (kind, payload, timestamp) VALUES (?, ?, ?)",
                (action.kind.value, action.payload_json(), action.timestamp),
            )
            self._conn.commit()
            action.id = cursor.lastrowid
        logger.debug("Queued action %d (%s)", action.id, action.kind.value)
        return action

    def update(self, action: QueuedAction) -> None:
        """Rewrite the payload of a queued action in place (keeps its position)."""
        if action.id is None:
            raise ValueError("Cannot update an action that was never queued")
        with self._lock:
            self._conn.execute(
                "UPDATE sync_queue SET kind = ?, payload = ? WHERE id = ?",
                (action.kind.value, action.payload_json(), action.id),
            )
            self._conn.commit()

    def remove(self, action_id: int) -> None:
        """Drop an action from the queue."""
        with self._lock:
            self._conn.execute("DELETE FROM sync_queue WHERE id = ?", (action_id,))
            self._conn.commit()

    def list(self) -> list[QueuedAction]:
        """All queued actions, oldest first."""
        with self._lock:
            cursor = self._conn.execute(
                "SELECT id, kind, payload, timestamp FROM sync_queue ORDER BY id ASC"
            )
            rows = cursor.fetchall()
        return [action_from_row(*row) for row in rows]

    def count(self) -> int:
        with self._lock:
            cursor = self._conn.execute("SELECT COUNT(*) FROM sync_queue")
            return cursor.fetchone()[0]

    def clear_queue(self) -> int:
        """Remove every queued action. Returns count removed."""
        with self._lock:
            cursor = self._conn.execute("DELETE FROM sync_queue")
            self._conn.commit()
            return cursor.rowcount

    # -------------------------------------------------------------------------
    # Response caches
    # -------------------------------------------------------------------------

    def cache_put(self, namespace: str, key: str, data: Any) -> None:
        """Store (or replace) a cached response."""
        with self._lock:
            self._conn.execute("""
                INSERT OR REPLACE INTO response_cache (namespace, key, data, timestamp)
                VALUES (?, ?, ?, ?)
            """, (namespace, key, json.dumps(data, ensure_ascii=False), time.time()))
            self._conn.commit()

    def cache_get(
        self,
        namespace: str,
        key: str,
        *,
        max_age: Optional[float] = CACHE_MAX_AGE_SECONDS,
        allow_stale: bool = False,
    ) -> Optional[CacheEntry]:
        """
        Fetch a cached response.

        Entries older than max_age are treated as missing unless
        allow_stale is set (used while offline, when stale beats nothing).
        """
        with self._lock:
            cursor = self._conn.execute(
                "SELECT data, timestamp FROM response_cache WHERE namespace = ? AND key = ?",
                (namespace, key),
            )
            row = cursor.fetchone()
        if row is None:
            return None
        entry = CacheEntry(key=key, data=json.loads(row[0]), timestamp=row[1])
        if max_age is not None and entry.age() > max_age and not allow_stale:
            return None
        return entry

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
