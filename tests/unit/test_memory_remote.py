"""
Unit tests for the in-memory remote event store.

Tests cover:
- Insert and uniqueness on (user_id, client_id)
- Arrival-time ordering and query_since
- Realtime subscriptions
- Scoping reads to one user
- Failure injection helpers
"""

import asyncio
from datetime import datetime, timezone

import pytest

from trunk.errors import DuplicateEventError, RemoteUnavailableError
from trunk.remote import InMemoryRemoteEventStore, RemoteEventInsert, RemoteEventStore
from tests.helpers import planted, watered


def row_for(event, user_id="user-1"):
    return RemoteEventInsert.from_event(event, user_id)


class TestInMemoryRemoteEventStore:
    """Tests for InMemoryRemoteEventStore."""

    @pytest.fixture
    def store(self):
        """Create a fresh store."""
        return InMemoryRemoteEventStore()

    def test_satisfies_protocol(self, store):
        assert isinstance(store, RemoteEventStore)

    @pytest.mark.asyncio
    async def test_insert_assigns_arrival_time(self, store):
        stored = await store.insert(row_for(planted(client_id="p1")))

        assert stored.client_id == "p1"
        assert stored.id
        assert stored.created_at
        assert stored.payload["sproutId"] == "sprout-1"

    @pytest.mark.asyncio
    async def test_duplicate_insert_rejected(self, store):
        event = planted(client_id="p1")
        await store.insert(row_for(event))

        with pytest.raises(DuplicateEventError) as exc_info:
            await store.insert(row_for(event))
        assert exc_info.value.retryable is False
        assert len(store.rows) == 1

    @pytest.mark.asyncio
    async def test_same_client_id_other_user_allowed(self, store):
        event = planted(client_id="p1")
        await store.insert(row_for(event, "user-1"))
        await store.insert(row_for(event, "user-2"))
        assert len(store.rows) == 2

    @pytest.mark.asyncio
    async def test_arrival_time_strictly_increasing(self):
        frozen = datetime(2026, 1, 15, 10, 0, tzinfo=timezone.utc)
        store = InMemoryRemoteEventStore(clock=lambda: frozen)

        first = await store.insert(row_for(watered(client_id="a")))
        second = await store.insert(row_for(watered(client_id="b")))

        assert second.created_at > first.created_at

    @pytest.mark.asyncio
    async def test_query_since(self, store):
        first = await store.insert(row_for(watered(client_id="a")))
        await store.insert(row_for(watered(client_id="b")))

        assert [r.client_id for r in await store.query_since(None)] == ["a", "b"]
        assert [r.client_id for r in await store.query_since(first.created_at)] == ["b"]

    @pytest.mark.asyncio
    async def test_user_scoped_reads(self):
        """A store bound to one user never returns another user's rows."""
        store = InMemoryRemoteEventStore(user_id="user-1")
        received = []

        async def consume():
            async for row in store.subscribe():
                received.append((row.user_id, row.client_id))

        task = asyncio.create_task(consume())
        await asyncio.sleep(0)

        first = await store.insert(row_for(watered(client_id="a"), "user-1"))
        await store.insert(row_for(watered(client_id="x"), "user-2"))
        await store.insert(row_for(watered(client_id="b"), "user-1"))
        await store.close()
        await asyncio.wait_for(task, timeout=1)

        assert [r.client_id for r in await store.query_since(None)] == ["a", "b"]
        assert [r.client_id for r in await store.query_since(first.created_at)] == ["b"]
        assert received == [("user-1", "a"), ("user-1", "b")]
        assert len(store.rows) == 3

    @pytest.mark.asyncio
    async def test_rows_rebuild_events(self, store):
        event = planted(client_id="p1", soil_cost=3)
        stored = await store.insert(row_for(event))
        assert stored.to_event() == event

    @pytest.mark.asyncio
    async def test_subscribe_receives_new_rows(self, store):
        received = []

        async def consume():
            async for row in store.subscribe():
                received.append(row.client_id)

        task = asyncio.create_task(consume())
        await asyncio.sleep(0)
        assert store.subscriber_count == 1

        await store.insert(row_for(watered(client_id="a")))
        await store.insert(row_for(watered(client_id="b")))
        await store.close()
        await asyncio.wait_for(task, timeout=1)

        assert received == ["a", "b"]
        assert store.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_inject_failure(self, store):
        store.inject_failure(RemoteUnavailableError("down"), times=2, operation="insert")

        with pytest.raises(RemoteUnavailableError):
            await store.insert(row_for(watered(client_id="a")))
        # Queries are not affected by insert failures
        assert await store.query_since(None) == []
        with pytest.raises(RemoteUnavailableError):
            await store.insert(row_for(watered(client_id="a")))

        await store.insert(row_for(watered(client_id="a")))
        assert store.insert_calls == 3
        assert store.client_ids() == {"a"}

    @pytest.mark.asyncio
    async def test_clear_failures(self, store):
        store.inject_failure(RemoteUnavailableError("down"), times=5)
        store.clear_failures()
        assert await store.query_since(None) == []
