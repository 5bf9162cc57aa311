"""
In-memory local cache for testing.

Same semantics as SqliteLocalCache without touching disk. Used by unit
tests and by the coordinator when no data directory is wanted.

Invariants:
    - All data is lost on process exit
    - Writes are all-or-nothing like the SQLite transactions they mirror
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence

from ..errors import CacheCorruptionError
from ..events.types import Event
from .base import CacheSnapshot

logger = logging.getLogger(__name__)


class InMemoryLocalCache:
    """Dictionary-backed LocalCache.

    Attributes:
        corrupt: When set, open() and load() raise CacheCorruptionError
            until recover() is called (testing helper)
    """

    def __init__(self) -> None:
        self._events: Dict[str, Event] = {}
        self._pending: Dict[str, None] = {}
        self._cursor: Optional[str] = None
        self._cache_version: Optional[int] = None
        self.corrupt = False
        self.recoveries = 0

    def _check(self) -> None:
        if self.corrupt:
            raise CacheCorruptionError("In-memory cache marked corrupt")

    async def open(self) -> None:
        self._check()

    async def close(self) -> None:
        pass

    async def load(self) -> CacheSnapshot:
        self._check()
        return CacheSnapshot(
            events=list(self._events.values()),
            cursor=self._cursor,
            cache_version=self._cache_version,
            pending=set(self._pending),
        )

    async def append_local(self, event: Event) -> bool:
        if event.client_id in self._events:
            return False
        self._events[event.client_id] = event
        self._pending[event.client_id] = None
        return True

    async def merge_remote(self, events: Sequence[Event], cursor: Optional[str]) -> List[Event]:
        added = []
        for event in events:
            self._pending.pop(event.client_id, None)
            if event.client_id not in self._events:
                self._events[event.client_id] = event
                added.append(event)
        if cursor is not None:
            self._cursor = cursor
        return added

    async def mark_synced(self, client_ids: Sequence[str]) -> None:
        for cid in client_ids:
            self._pending.pop(cid, None)

    async def reset_sync_state(self, cache_version: int) -> None:
        self._pending.clear()
        self._cursor = None
        self._cache_version = cache_version

    async def set_pending(self, client_ids: Sequence[str]) -> None:
        self._pending = {cid: None for cid in client_ids}

    async def recover(self) -> None:
        logger.error("Discarding corrupt in-memory cache")
        self._events.clear()
        self._pending.clear()
        self._cursor = None
        self._cache_version = None
        self.corrupt = False
        self.recoveries += 1
