"""
Unit tests for the SQLite local cache.

Tests cover:
- Append with pending mark
- Merge with cursor advance
- Sync state reset keeps events
- Persistence across instances
- Corruption detection and quarantine
"""

import sqlite3
import tempfile
from pathlib import Path

import pytest

from trunk.cache import InMemoryLocalCache, LocalCache, SqliteLocalCache
from trunk.config import CacheConfig
from trunk.errors import CacheCorruptionError
from tests.helpers import planted, watered


class TestSqliteLocalCache:
    """Tests for SqliteLocalCache."""

    @pytest.fixture
    def data_dir(self):
        """Create temporary data directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    @pytest.fixture
    def path(self, data_dir):
        return Path(data_dir) / "events_user-1.db"

    @pytest.fixture
    async def cache(self, path):
        """Opened cache in a temporary directory."""
        cache = SqliteLocalCache(path, wal_mode=False)
        await cache.open()
        yield cache
        await cache.close()

    def test_satisfies_protocol(self, path):
        assert isinstance(SqliteLocalCache(path), LocalCache)
        assert isinstance(InMemoryLocalCache(), LocalCache)

    @pytest.mark.asyncio
    async def test_empty_snapshot(self, cache):
        snapshot = await cache.load()

        assert snapshot.events == []
        assert snapshot.cursor is None
        assert snapshot.cache_version is None
        assert snapshot.pending == set()

    @pytest.mark.asyncio
    async def test_append_marks_pending(self, cache):
        event = planted(client_id="p1")

        assert await cache.append_local(event) is True
        snapshot = await cache.load()

        assert snapshot.events == [event]
        assert snapshot.pending == {"p1"}
        assert snapshot.pending_events == [event]

    @pytest.mark.asyncio
    async def test_append_duplicate_is_noop(self, cache):
        event = planted(client_id="p1")
        await cache.append_local(event)

        assert await cache.append_local(event) is False
        assert len((await cache.load()).events) == 1

    @pytest.mark.asyncio
    async def test_arrival_order_kept(self, cache):
        """Events come back in arrival order, not timestamp order."""
        late = watered(at=500, client_id="late")
        early = watered(at=10, client_id="early")
        await cache.append_local(late)
        await cache.append_local(early)

        snapshot = await cache.load()
        assert [e.client_id for e in snapshot.events] == ["late", "early"]

    @pytest.mark.asyncio
    async def test_merge_remote_sets_cursor(self, cache):
        remote_event = watered(client_id="r1")

        added = await cache.merge_remote([remote_event], "2026-01-15T10:00:01.000000+00:00")
        snapshot = await cache.load()

        assert added == [remote_event]
        assert snapshot.cursor == "2026-01-15T10:00:01.000000+00:00"
        assert snapshot.pending == set()

    @pytest.mark.asyncio
    async def test_merge_remote_confirms_pending(self, cache):
        """A remote copy of a local event clears its pending mark."""
        event = planted(client_id="p1")
        await cache.append_local(event)

        added = await cache.merge_remote([event], None)
        snapshot = await cache.load()

        assert added == []
        assert snapshot.pending == set()
        assert len(snapshot.events) == 1

    @pytest.mark.asyncio
    async def test_merge_without_cursor_keeps_cursor(self, cache):
        await cache.merge_remote([], "c1")
        await cache.merge_remote([watered(client_id="r1")], None)
        assert (await cache.load()).cursor == "c1"

    @pytest.mark.asyncio
    async def test_mark_synced(self, cache):
        await cache.append_local(planted(client_id="p1"))
        await cache.append_local(watered(client_id="w1"))

        await cache.mark_synced(["p1"])
        assert (await cache.load()).pending == {"w1"}

    @pytest.mark.asyncio
    async def test_reset_sync_state_keeps_events(self, cache):
        await cache.append_local(planted(client_id="p1"))
        await cache.merge_remote([watered(client_id="r1")], "c1")

        await cache.reset_sync_state(7)
        snapshot = await cache.load()

        assert len(snapshot.events) == 2
        assert snapshot.cursor is None
        assert snapshot.pending == set()
        assert snapshot.cache_version == 7

    @pytest.mark.asyncio
    async def test_set_pending_replaces(self, cache):
        await cache.append_local(planted(client_id="p1"))
        await cache.set_pending(["x", "y"])
        assert (await cache.load()).pending == {"x", "y"}

    @pytest.mark.asyncio
    async def test_persists_across_instances(self, cache, path):
        event = planted(client_id="p1")
        await cache.append_local(event)
        await cache.merge_remote([], "c1")

        reopened = SqliteLocalCache(path, wal_mode=False)
        await reopened.open()
        snapshot = await reopened.load()

        assert snapshot.events == [event]
        assert snapshot.cursor == "c1"
        assert snapshot.pending == {"p1"}

    @pytest.mark.asyncio
    async def test_undecodable_row_is_corruption(self, cache, path):
        await cache.append_local(planted(client_id="p1"))
        conn = sqlite3.connect(str(path))
        conn.execute("UPDATE events SET payload_json = '{not json'")
        conn.commit()
        conn.close()

        with pytest.raises(CacheCorruptionError) as exc_info:
            await cache.load()
        assert exc_info.value.code == "CACHE_CORRUPT"

    @pytest.mark.asyncio
    async def test_garbage_file_is_corruption(self, path):
        path.write_bytes(b"this is not a sqlite database" * 100)
        cache = SqliteLocalCache(path, wal_mode=False)

        with pytest.raises(CacheCorruptionError):
            await cache.open()

    @pytest.mark.asyncio
    async def test_recover_quarantines_file(self, path):
        path.write_bytes(b"this is not a sqlite database" * 100)
        cache = SqliteLocalCache(path, wal_mode=False)

        await cache.recover()
        snapshot = await cache.load()

        assert snapshot.events == []
        quarantined = list(path.parent.glob(f"{path.name}.corrupt-*"))
        assert len(quarantined) == 1

    def test_for_user_sanitizes_id(self, data_dir):
        cache = SqliteLocalCache.for_user(CacheConfig(data_dir=data_dir), "../../etc/passwd")
        assert cache.path.parent == Path(data_dir)
        assert cache.path.name == "events_etcpasswd.db"


class TestInMemoryLocalCache:
    """Tests for the in-memory cache used by coordinator tests."""

    @pytest.mark.asyncio
    async def test_same_semantics(self):
        cache = InMemoryLocalCache()
        event = planted(client_id="p1")

        assert await cache.append_local(event)
        assert not await cache.append_local(event)
        assert await cache.merge_remote([event, watered(client_id="r1")], "c1") != []

        snapshot = await cache.load()
        assert [e.client_id for e in snapshot.events] == ["p1", "r1"]
        assert snapshot.pending == set()
        assert snapshot.cursor == "c1"

    @pytest.mark.asyncio
    async def test_corrupt_flag(self):
        cache = InMemoryLocalCache()
        await cache.append_local(planted(client_id="p1"))
        cache.corrupt = True

        with pytest.raises(CacheCorruptionError):
            await cache.load()

        await cache.recover()
        assert (await cache.load()).events == []
        assert cache.recoveries == 1
