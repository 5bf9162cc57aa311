"""
SQLite local cache.

One SQLite file per user holds the event log and the sync bookkeeping.
Every multi-row write runs inside a single ``BEGIN IMMEDIATE`` transaction
so a crash can never leave an event stored without its pending mark, or a
cursor advanced past events that were not written.

Invariants:
    - events.client_id is UNIQUE; inserts of a known id are no-ops
    - Arrival order is the autoincrement seq
    - Unreadable files are quarantined, never deleted

How to change safely:
    - Schema changes bump CACHE_VERSION; old caches then full-resync
    - Keep every write path inside _transaction()

Table schema:
    events:
        - seq INTEGER PRIMARY KEY AUTOINCREMENT
        - client_id TEXT UNIQUE
        - type TEXT
        - timestamp TEXT
        - payload_json TEXT (wire form of the event)
        - stored_at INTEGER (Unix ms)

    pending_uploads:
        - client_id TEXT PRIMARY KEY
        - queued_at INTEGER (Unix ms)

    sync_meta:
        - key TEXT PRIMARY KEY ('cursor', 'cache_version')
        - value TEXT
"""

from __future__ import annotations

import json
import logging
import sqlite3
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import List, Optional, Sequence

from ..config import CacheConfig
from ..errors import CacheCorruptionError, CacheError, EventValidationError
from ..events.types import Event, parse_event
from .base import CacheSnapshot

logger = logging.getLogger(__name__)

_SCHEMA = """
    CREATE TABLE IF NOT EXISTS events (
        seq INTEGER PRIMARY KEY AUTOINCREMENT,
        client_id TEXT NOT NULL UNIQUE,
        type TEXT NOT NULL,
        timestamp TEXT NOT NULL,
        payload_json TEXT NOT NULL,
        stored_at INTEGER NOT NULL
    );

    CREATE TABLE IF NOT EXISTS pending_uploads (
        client_id TEXT PRIMARY KEY,
        queued_at INTEGER NOT NULL
    );

    CREATE TABLE IF NOT EXISTS sync_meta (
        key TEXT PRIMARY KEY,
        value TEXT
    );
"""


class SqliteLocalCache:
    """Per-user SQLite implementation of LocalCache.

    Thread safety:
        A connection is opened per operation. The sync coordinator
        serializes writers; SQLite handles concurrent readers in WAL mode.

    Example:
        >>> cache = SqliteLocalCache.for_user(CacheConfig(), "user-1")
        >>> await cache.open()
        >>> await cache.append_local(event)
        True
    """

    def __init__(self, path: str | Path, busy_timeout_ms: int = 5000, wal_mode: bool = True) -> None:
        self.path = Path(path).expanduser()
        self.busy_timeout_ms = busy_timeout_ms
        self.wal_mode = wal_mode

    @classmethod
    def for_user(cls, config: CacheConfig, user_id: str) -> SqliteLocalCache:
        """Cache file for a user under the configured data directory."""
        # Sanitize user_id to prevent path traversal
        safe_id = "".join(c for c in user_id if c.isalnum() or c in "-_") or "anonymous"
        path = Path(config.data_dir).expanduser() / config.db_pattern.format(user_id=safe_id)
        return cls(path, busy_timeout_ms=config.busy_timeout_ms, wal_mode=config.wal_mode)

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(
            str(self.path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
        )
        conn.row_factory = sqlite3.Row
        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            yield conn
        finally:
            conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        try:
            with self._get_connection() as conn:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    yield conn
                    conn.execute("COMMIT")
                except Exception:
                    conn.execute("ROLLBACK")
                    raise
        except sqlite3.DatabaseError as e:
            raise self._wrap(e) from e

    def _wrap(self, error: sqlite3.DatabaseError) -> CacheError:
        # OperationalError covers locking and I/O trouble; other DatabaseErrors mean the file is bad
        if isinstance(error, (sqlite3.OperationalError, sqlite3.IntegrityError)):
            return CacheError(f"Cache operation failed: {error}", path=str(self.path))
        return CacheCorruptionError(f"Cache unreadable: {error}", path=str(self.path))

    async def open(self) -> None:
        try:
            with self._get_connection() as conn:
                conn.executescript(_SCHEMA)
        except sqlite3.DatabaseError as e:
            raise self._wrap(e) from e
        logger.debug("Opened local cache", extra={"path": str(self.path)})

    async def close(self) -> None:
        """Nothing to release; connections are per operation."""

    async def load(self) -> CacheSnapshot:
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT client_id, payload_json FROM events ORDER BY seq"
            ).fetchall()
            pending = {r["client_id"] for r in conn.execute("SELECT client_id FROM pending_uploads")}
            meta = {r["key"]: r["value"] for r in conn.execute("SELECT key, value FROM sync_meta")}

        events: List[Event] = []
        for row in rows:
            try:
                events.append(parse_event(json.loads(row["payload_json"])))
            except (ValueError, EventValidationError) as e:
                raise CacheCorruptionError(
                    f"Stored event {row['client_id']} cannot be decoded: {e}",
                    path=str(self.path),
                ) from e

        version = meta.get("cache_version")
        try:
            cache_version = int(version) if version is not None else None
        except ValueError:
            cache_version = None

        return CacheSnapshot(
            events=events,
            cursor=meta.get("cursor"),
            cache_version=cache_version,
            pending=pending,
        )

    @staticmethod
    def _insert_event(conn: sqlite3.Connection, event: Event) -> bool:
        cursor = conn.execute(
            """
            INSERT OR IGNORE INTO events (client_id, type, timestamp, payload_json, stored_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                event.client_id,
                event.type,
                event.timestamp,
                json.dumps(event.to_dict(), sort_keys=True),
                int(time.time() * 1000),
            ),
        )
        return cursor.rowcount > 0

    async def append_local(self, event: Event) -> bool:
        with self._transaction() as conn:
            added = self._insert_event(conn, event)
            if added:
                conn.execute(
                    "INSERT OR IGNORE INTO pending_uploads (client_id, queued_at) VALUES (?, ?)",
                    (event.client_id, int(time.time() * 1000)),
                )
        return added

    async def merge_remote(self, events: Sequence[Event], cursor: Optional[str]) -> List[Event]:
        added: List[Event] = []
        with self._transaction() as conn:
            for event in events:
                if self._insert_event(conn, event):
                    added.append(event)
            conn.executemany(
                "DELETE FROM pending_uploads WHERE client_id = ?",
                [(event.client_id,) for event in events],
            )
            if cursor is not None:
                conn.execute(
                    "INSERT OR REPLACE INTO sync_meta (key, value) VALUES ('cursor', ?)",
                    (cursor,),
                )
        return added

    async def mark_synced(self, client_ids: Sequence[str]) -> None:
        with self._transaction() as conn:
            conn.executemany(
                "DELETE FROM pending_uploads WHERE client_id = ?",
                [(cid,) for cid in client_ids],
            )

    async def reset_sync_state(self, cache_version: int) -> None:
        with self._transaction() as conn:
            conn.execute("DELETE FROM pending_uploads")
            conn.execute("DELETE FROM sync_meta WHERE key = 'cursor'")
            conn.execute(
                "INSERT OR REPLACE INTO sync_meta (key, value) VALUES ('cache_version', ?)",
                (str(cache_version),),
            )

    async def set_pending(self, client_ids: Sequence[str]) -> None:
        now = int(time.time() * 1000)
        with self._transaction() as conn:
            conn.execute("DELETE FROM pending_uploads")
            conn.executemany(
                "INSERT OR IGNORE INTO pending_uploads (client_id, queued_at) VALUES (?, ?)",
                [(cid, now) for cid in client_ids],
            )

    async def recover(self) -> None:
        """Move the unreadable file aside and create a fresh one."""
        stamp = time.strftime("%Y%m%dT%H%M%S")
        for suffix in ("", "-wal", "-shm"):
            source = Path(f"{self.path}{suffix}")
            if source.exists():
                target = Path(f"{self.path}{suffix}.corrupt-{stamp}")
                source.rename(target)
                logger.error(
                    "Quarantined unreadable cache file",
                    extra={"path": str(source), "quarantined_as": str(target)},
                )
        await self.open()
