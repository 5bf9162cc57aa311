"""
In-memory remote event store for testing.

This module provides a remote store backend for:
- Unit and integration tests of the sync coordinator
- Simulating several devices sharing one log in a single process
- Injecting failures, latency and duplicate deliveries

Invariants:
    - All data is lost on process exit
    - Same uniqueness and ordering guarantees as the HTTP store
    - created_at is strictly increasing across inserts
    - With user_id set, reads and realtime only see that user's rows;
      without it one instance stands in for a single user's log

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep interface compatible with RemoteEventStore protocol
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import deque
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, Callable, Deque, Dict, List, Optional, Set, Tuple

from ..errors import DuplicateEventError
from ..events.types import parse_timestamp
from .models import RemoteEventInsert, RemoteEventRow

logger = logging.getLogger(__name__)

_CLOSED = object()


class InMemoryRemoteEventStore:
    """In-memory implementation of RemoteEventStore.

    Several coordinators can share one instance to play the part of
    several devices of the same user.

    Attributes:
        latency: Seconds every call sleeps before doing anything
        insert_calls: Number of insert() calls, including failed ones
        query_calls: Number of query_since() calls, including failed ones
        user_id: Owner whose rows reads return; None returns every row

    Example:
        >>> store = InMemoryRemoteEventStore()
        >>> store.inject_failure(RemoteUnavailableError("down"), times=2)
        >>> await store.insert(row)  # raises
    """

    def __init__(
        self,
        clock: Optional[Callable[[], datetime]] = None,
        user_id: Optional[str] = None,
    ) -> None:
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.user_id = user_id
        self._rows: List[RemoteEventRow] = []
        self._keys: Set[Tuple[str, str]] = set()
        self._last_created: Optional[datetime] = None
        self._subscribers: List[asyncio.Queue] = []
        self._failures: Deque[Tuple[Optional[str], Exception]] = deque()
        self._lock = asyncio.Lock()
        self.latency = 0.0
        self.insert_calls = 0
        self.query_calls = 0

    def _next_created_at(self) -> str:
        now = self._clock()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        if self._last_created is not None and now <= self._last_created:
            now = self._last_created + timedelta(microseconds=1)
        self._last_created = now
        return now.astimezone(timezone.utc).isoformat(timespec="microseconds")

    def _visible(self, row: RemoteEventRow) -> bool:
        return self.user_id is None or row.user_id == self.user_id

    async def _before_call(self, operation: str) -> None:
        if self.latency:
            await asyncio.sleep(self.latency)
        if self._failures:
            target, exc = self._failures[0]
            if target is None or target == operation:
                self._failures.popleft()
                raise exc

    async def insert(self, row: RemoteEventInsert) -> RemoteEventRow:
        self.insert_calls += 1
        await self._before_call("insert")
        async with self._lock:
            key = (row.user_id, row.client_id)
            if key in self._keys:
                raise DuplicateEventError(row.client_id)
            stored = RemoteEventRow(
                id=str(uuid.uuid4()),
                created_at=self._next_created_at(),
                **row.model_dump(),
            )
            self._keys.add(key)
            self._rows.append(stored)
            for queue in self._subscribers:
                queue.put_nowait(stored)

        logger.debug(
            "Event row stored in memory",
            extra={"client_id": row.client_id, "created_at": stored.created_at},
        )
        return stored

    async def query_since(self, cursor: Optional[str]) -> List[RemoteEventRow]:
        self.query_calls += 1
        await self._before_call("query")
        rows = [r for r in self._rows if self._visible(r)]
        after = parse_timestamp(cursor) if cursor is not None else None
        if after is None:
            return rows
        return [r for r in rows if (parse_timestamp(r.created_at) or after) > after]

    async def subscribe(self) -> AsyncIterator[RemoteEventRow]:
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.append(queue)
        try:
            while True:
                item = await queue.get()
                if item is _CLOSED:
                    return
                if not self._visible(item):
                    continue
                yield item
        finally:
            if queue in self._subscribers:
                self._subscribers.remove(queue)

    async def close(self) -> None:
        for queue in list(self._subscribers):
            queue.put_nowait(_CLOSED)

    # Testing helpers

    def inject_failure(self, exception: Exception, times: int = 1, operation: Optional[str] = None) -> None:
        """Make the next ``times`` calls raise ``exception``.

        Args:
            exception: Exception to raise
            times: Number of calls to fail
            operation: Restrict to "insert" or "query"; None fails any call
        """
        for _ in range(times):
            self._failures.append((operation, exception))

    def clear_failures(self) -> None:
        self._failures.clear()

    def deliver(self, row: RemoteEventRow) -> None:
        """Push a row to subscribers without storing it (duplicate delivery)."""
        for queue in self._subscribers:
            queue.put_nowait(row)

    @property
    def rows(self) -> List[RemoteEventRow]:
        return list(self._rows)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def client_ids(self) -> Set[str]:
        return {client_id for _, client_id in self._keys}

    def rows_by_client_id(self) -> Dict[str, RemoteEventRow]:
        return {r.client_id: r for r in self._rows}
