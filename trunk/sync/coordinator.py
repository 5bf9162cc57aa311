"""
Sync coordinator for Trunk.

The coordinator reconciles a device's local event log with the shared
remote log under intermittent connectivity. It is the only writer of the
local cache and the only entry point for new local events.

    append_local_event ─▶ cache (event + pending mark, one transaction)
                            │
    sync():   version check ─┬─ match ───▶ push pending ─▶ pull since cursor
                             └─ mismatch ─▶ full resync ─▶ push pending
    realtime: row ─▶ validate ─▶ merge (dedup by client_id)

Invariants:
    - A local event stays pending until the remote confirms it (insert
      succeeded, insert hit the uniqueness constraint, or a pull saw it)
    - Events are merged by client_id only; a known id is never stored twice
    - The cursor only moves forward and only together with the events it
      covers (one cache transaction)
    - Nothing is written to the cache until a remote call has returned,
      so cancelling a cycle mid-call is safe
    - Transient failures never raise out of sync(); they are reported via
      SyncResult and the status signal

How to change safely:
    - Keep every remote call inside _call() so the timeout applies
    - Keep every cache write under _cache_lock
    - Full resync must never drop events from the log
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, tzinfo
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, TypeVar

from ..config import CACHE_VERSION, SoilConstants, SyncConfig
from ..derive import DerivedState, ResourceState, derive, resource_state
from ..errors import (
    CacheCorruptionError,
    CacheError,
    DuplicateEventError,
    EventValidationError,
    NotAuthenticatedError,
    RemoteError,
    RemoteTimeoutError,
    TrunkError,
)
from ..events.log import EventLog
from ..events.types import BaseEvent, Event, parse_event, parse_timestamp
from ..cache.base import LocalCache
from ..remote.base import RemoteEventStore
from ..remote.models import RemoteEventInsert, RemoteEventRow, parse_row
from .retry import Backoff
from .status import Listener, SyncStatus, SyncStatusTracker

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SyncPhase(str, Enum):
    IDLE = "idle"
    PUSHING = "pushing"
    PULLING = "pulling"


@dataclass
class SyncResult:
    """Outcome of a sync operation.

    Attributes:
        pushed: Local events confirmed by the remote
        pulled: Remote events newly merged into the log
        full_resync: Whether the cycle rebuilt sync state from scratch
        push_deferred: Push skipped because the backoff delay has not elapsed
        auth_required: The remote rejected the session; sync is paused
        error: Message of the failure, if any
        error_code: Code of the failure, if any
    """

    pushed: int = 0
    pulled: int = 0
    full_resync: bool = False
    push_deferred: bool = False
    auth_required: bool = False
    error: Optional[str] = None
    error_code: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def fail(self, error: TrunkError) -> None:
        self.error = error.message
        self.error_code = error.code
        if isinstance(error, NotAuthenticatedError):
            self.auth_required = True

    def merge(self, other: SyncResult) -> None:
        self.pushed += other.pushed
        self.pulled += other.pulled
        self.full_resync = self.full_resync or other.full_resync
        self.push_deferred = self.push_deferred or other.push_deferred
        self.auth_required = self.auth_required or other.auth_required
        if other.error is not None and self.error is None:
            self.error = other.error
            self.error_code = other.error_code


def _later(a: Optional[str], b: Optional[str]) -> Optional[str]:
    """The later of two arrival timestamps; unparseable values lose."""
    if a is None:
        return b
    if b is None:
        return a
    pa, pb = parse_timestamp(a), parse_timestamp(b)
    if pb is None:
        return a
    if pa is None:
        return b
    return b if pb > pa else a


class SyncCoordinator:
    """Keeps the local log and the remote log converging.

    Thread safety:
        Designed for a single event loop. Sync cycles are serialized by
        an asyncio.Lock; concurrent sync() calls coalesce onto the cycle
        in flight. Appends are not blocked by a running cycle.

    Example:
        >>> coordinator = SyncCoordinator(cache, remote, user_id="user-1")
        >>> await coordinator.open()
        >>> await coordinator.append_local_event(event)
        >>> result = await coordinator.sync()
        >>> state = coordinator.get_derived_state()
    """

    def __init__(
        self,
        cache: LocalCache,
        remote: Optional[RemoteEventStore],
        user_id: str,
        config: Optional[SyncConfig] = None,
        constants: Optional[SoilConstants] = None,
        tz: Optional[tzinfo] = None,
        clock: Callable[[], float] = time.monotonic,
        rng: Optional[Callable[[], float]] = None,
    ) -> None:
        """Initialize the coordinator.

        Args:
            cache: Local cache (opened by open())
            remote: Remote store, or None to run purely local
            user_id: Owner of the log; rows are tagged with it
            config: Timeouts, interval and backoff settings
            constants: Economy table for derivation
            tz: Zone for local-time derivation rules
            clock: Monotonic clock for the backoff gate
            rng: Jitter source for the backoff gate
        """
        self.cache = cache
        self.remote = remote
        self.user_id = user_id
        self.config = config or SyncConfig()
        self.constants = constants
        self.tz = tz

        backoff_kwargs: Dict[str, Any] = {"clock": clock}
        if rng is not None:
            backoff_kwargs["rng"] = rng
        self.backoff = Backoff.from_config(self.config, **backoff_kwargs)

        self._log = EventLog()
        self._pending: Set[str] = set()
        self._cursor: Optional[str] = None
        self._cache_version: Optional[int] = None
        self._needs_full_resync = False
        self._opened = False

        self._cache_lock = asyncio.Lock()
        self._cycle_lock = asyncio.Lock()
        self._inflight: Optional[asyncio.Task] = None
        self._phase = SyncPhase.IDLE

        self._memo: Optional[DerivedState] = None
        self._memo_length = -1

        self._running = False
        self._stop = asyncio.Event()
        self._wake = asyncio.Event()
        self._resumed = asyncio.Event()
        self._resumed.set()
        self._realtime_task: Optional[asyncio.Task] = None

        self._status = SyncStatusTracker()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> None:
        """Load the cache into memory.

        A corrupt cache is quarantined and replaced by an empty one; the
        next sync() then performs a full resync.
        """
        try:
            await self.cache.open()
            snapshot = await self.cache.load()
        except CacheCorruptionError as e:
            logger.error(
                "Local cache corrupt, starting empty and scheduling full resync",
                extra={"error": e.message, "path": e.path},
            )
            await self.cache.recover()
            snapshot = await self.cache.load()
            self._needs_full_resync = True

        self._log = EventLog(snapshot.events)
        self._pending = set(snapshot.pending) & self._log.client_ids()
        self._cursor = snapshot.cursor
        self._cache_version = snapshot.cache_version
        self._opened = True
        self._invalidate()
        self._refresh_status()

        logger.info(
            "Sync coordinator opened",
            extra={
                "user_id": self.user_id,
                "events": len(self._log),
                "pending": len(self._pending),
                "cursor": self._cursor,
                "cache_version": self._cache_version,
            },
        )

    async def close(self) -> None:
        await self.stop()
        await self.cache.close()

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def events(self) -> tuple[Event, ...]:
        return self._log.events

    @property
    def pending(self) -> frozenset[str]:
        return frozenset(self._pending)

    @property
    def cursor(self) -> Optional[str]:
        return self._cursor

    @property
    def phase(self) -> SyncPhase:
        return self._phase

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def status(self) -> SyncStatus:
        return self._status.snapshot()

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Listen to sync status changes; returns an unsubscribe function."""
        return self._status.subscribe(listener)

    def get_derived_state(self) -> DerivedState:
        """Derived state of the current log, memoized on the log length."""
        if self._memo is None or self._memo_length != len(self._log):
            self._memo = derive(self._log.events, constants=self.constants, tz=self.tz)
            self._memo_length = len(self._log)
        return self._memo

    def resource_state(self, now: Optional[datetime] = None) -> ResourceState:
        return resource_state(
            self._log.events,
            now,
            constants=self.constants,
            tz=self.tz,
            state=self.get_derived_state(),
        )

    @property
    def stats(self) -> Dict[str, Any]:
        """Coordinator statistics."""
        return {
            "running": self._running,
            "phase": self._phase.value,
            "events": len(self._log),
            "pending": len(self._pending),
            "cursor": self._cursor,
            "cache_version": self._cache_version,
            "backoff_attempt": self.backoff.attempt,
            "status": self._status.state.value,
        }

    def _invalidate(self) -> None:
        self._memo = None
        self._memo_length = -1

    def _refresh_status(self) -> None:
        self._status.pending_count = len(self._pending)
        self._status.last_confirmed_at = self._cursor
        self._status.notify()

    # ------------------------------------------------------------------
    # Write side
    # ------------------------------------------------------------------

    async def append_local_event(self, event: Event | Dict[str, Any]) -> bool:
        """Record a new local event.

        The event is persisted and marked pending in one cache write, the
        derived-state memo is invalidated and a push is scheduled.
        A corrupt cache is rebuilt from the in-memory log before the event
        is written, and the next sync() runs a full resync.

        Returns:
            False if an event with the same client_id already exists

        Raises:
            EventValidationError: If a mapping is not a valid event
            CacheError: If the event could not be persisted
        """
        if not isinstance(event, BaseEvent):
            event = parse_event(event)

        async with self._cache_lock:
            if event.client_id in self._log:
                return False
            try:
                added = await self.cache.append_local(event)
            except CacheCorruptionError as e:
                await self._recover_cache(e)
                added = await self.cache.append_local(event)
            self._log.append(event)
            if added:
                self._pending.add(event.client_id)

        logger.debug(
            "Local event appended",
            extra={"client_id": event.client_id, "event_type": event.type},
        )
        self._invalidate()
        self._refresh_status()
        self._wake.set()
        return True

    # ------------------------------------------------------------------
    # Remote operations
    # ------------------------------------------------------------------

    async def _call(self, awaitable: Awaitable[T], what: str) -> T:
        timeout = self.config.request_timeout_seconds
        try:
            return await asyncio.wait_for(awaitable, timeout=timeout)
        except asyncio.TimeoutError:
            raise RemoteTimeoutError(f"Remote {what} timed out after {timeout}s", timeout=timeout) from None

    def _remote_or_fail(self, result: SyncResult) -> Optional[RemoteEventStore]:
        if self.remote is None:
            result.error = "Remote store not configured"
            result.error_code = "REMOTE_DISABLED"
            return None
        if self._status.auth_required:
            result.fail(NotAuthenticatedError("Sync paused until a new session is supplied"))
            return None
        return self.remote

    def _handle_auth(self, error: NotAuthenticatedError) -> None:
        if not self._status.auth_required:
            logger.warning("Remote rejected session; pausing sync", extra={"error": error.message})
        self._status.auth_required = True
        self._resumed.clear()

    async def push_pending(self) -> SyncResult:
        """Insert every pending event into the remote store.

        Stops at the first transient failure and leaves the rest pending;
        the next attempt waits for the backoff delay.
        """
        result = SyncResult()
        remote = self._remote_or_fail(result)
        if remote is None:
            return result

        to_push = [e for e in self._log.events if e.client_id in self._pending]
        if not to_push:
            self.backoff.record_success()
            return result
        if not self.backoff.ready():
            result.push_deferred = True
            logger.debug(
                "Push deferred by backoff",
                extra={"remaining_seconds": round(self.backoff.remaining(), 3)},
            )
            return result

        self.backoff.record_attempt()
        self._phase = SyncPhase.PUSHING
        try:
            for event in to_push:
                row = RemoteEventInsert.from_event(event, self.user_id)
                try:
                    await self._call(remote.insert(row), "insert")
                except DuplicateEventError:
                    logger.debug("Event already stored remotely", extra={"client_id": event.client_id})
                except NotAuthenticatedError as e:
                    self._handle_auth(e)
                    result.fail(e)
                    break
                except RemoteError as e:
                    logger.warning(
                        "Push failed; event stays pending",
                        extra={"client_id": event.client_id, "error": e.message, "code": e.code},
                    )
                    result.fail(e)
                    break

                async with self._cache_lock:
                    await self.cache.mark_synced([event.client_id])
                    self._pending.discard(event.client_id)
                result.pushed += 1
        finally:
            self._phase = SyncPhase.IDLE

        if result.ok:
            self.backoff.record_success()
        elif not result.auth_required:
            self.backoff.record_failure()

        self._refresh_status()
        return result

    def _rows_to_events(self, rows: List[RemoteEventRow]) -> List[Event]:
        events: List[Event] = []
        for row in rows:
            try:
                events.append(row.to_event())
            except EventValidationError as e:
                logger.warning(
                    "Dropping remote row with invalid payload",
                    extra={"client_id": row.client_id, "error": e.message},
                )
        return events

    async def _pull(self, cursor: Optional[str], result: SyncResult) -> Optional[List[RemoteEventRow]]:
        remote = self._remote_or_fail(result)
        if remote is None:
            return None

        self._phase = SyncPhase.PULLING
        try:
            rows = await self._call(remote.query_since(cursor), "query")
        except NotAuthenticatedError as e:
            self._handle_auth(e)
            result.fail(e)
            return None
        except RemoteError as e:
            logger.warning("Pull failed; cursor unchanged", extra={"error": e.message, "code": e.code})
            result.fail(e)
            return None
        finally:
            self._phase = SyncPhase.IDLE

        events = self._rows_to_events(rows)
        greatest = cursor
        for row in rows:
            greatest = _later(greatest, row.created_at)

        async with self._cache_lock:
            new_cursor = _later(self._cursor, greatest)
            await self.cache.merge_remote(events, new_cursor)
            added = self._log.merge(events)
            for event in events:
                self._pending.discard(event.client_id)
            self._cursor = new_cursor

        result.pulled += len(added)
        if added:
            self._invalidate()
        logger.debug(
            "Pulled remote events",
            extra={"rows": len(rows), "added": len(added), "cursor": self._cursor},
        )
        return rows

    async def pull_since(self, cursor: Optional[str] = None) -> SyncResult:
        """Merge remote events that arrived after ``cursor`` (stored cursor by default)."""
        result = SyncResult()
        await self._pull(cursor if cursor is not None else self._cursor, result)
        self._refresh_status()
        return result

    async def realtime_ingest(self, row: RemoteEventRow | Dict[str, Any]) -> bool:
        """Merge one row delivered by the realtime feed.

        Invalid rows are dropped. The cursor is not moved: a later pull
        covers anything the feed delivered out of order.

        Returns:
            True if the log grew
        """
        try:
            parsed = row if isinstance(row, RemoteEventRow) else parse_row(row)
            event = parsed.to_event()
        except EventValidationError as e:
            logger.warning("Dropping invalid realtime row", extra={"error": e.message})
            return False

        async with self._cache_lock:
            confirmed = event.client_id in self._pending
            if event.client_id in self._log and not confirmed:
                return False
            added = await self.cache.merge_remote([event], None)
            self._log.merge(added)
            self._pending.discard(event.client_id)

        if added:
            self._invalidate()
            logger.debug("Realtime event merged", extra={"client_id": event.client_id})
        self._refresh_status()
        return bool(added)

    async def full_resync(self) -> SyncResult:
        """Rebuild sync state from the remote log.

        The cursor and pending set are discarded (never the events), every
        remote row is pulled again, and the pending set is recomputed as
        the local events the remote does not have.
        """
        result = SyncResult(full_resync=True)
        logger.info("Starting full resync", extra={"events": len(self._log)})

        async with self._cache_lock:
            await self.cache.reset_sync_state(CACHE_VERSION)
            self._cursor = None
            self._pending.clear()
            self._cache_version = CACHE_VERSION

        rows = await self._pull(None, result)

        if rows is None:
            # Remote state unknown: everything local is a candidate for push
            remote_ids: Set[str] = set()
        else:
            remote_ids = {row.client_id for row in rows}
            self._needs_full_resync = False

        async with self._cache_lock:
            missing = [e.client_id for e in self._log.events if e.client_id not in remote_ids]
            await self.cache.set_pending(missing)
            self._pending = set(missing)

        logger.info(
            "Full resync finished",
            extra={"pulled": result.pulled, "pending": len(missing), "ok": result.ok},
        )
        self._refresh_status()
        return result

    async def _recover_cache(self, error: CacheCorruptionError) -> None:
        logger.error(
            "Local cache corrupt; rebuilding from the in-memory log",
            extra={"error": error.message},
        )
        await self.cache.recover()
        for event in self._log.events:
            await self.cache.append_local(event)
        self._needs_full_resync = True

    # ------------------------------------------------------------------
    # Cycles
    # ------------------------------------------------------------------

    async def sync(self) -> SyncResult:
        """Run one sync cycle; concurrent calls share the cycle in flight."""
        if self._inflight is not None and not self._inflight.done():
            return await asyncio.shield(self._inflight)
        self._inflight = asyncio.ensure_future(self._sync_cycle())
        return await asyncio.shield(self._inflight)

    async def _sync_cycle(self) -> SyncResult:
        async with self._cycle_lock:
            if not self._opened:
                await self.open()

            self._status.syncing = True
            self._status.notify()
            result = SyncResult()
            try:
                try:
                    await self._run_cycle(result)
                except CacheCorruptionError as e:
                    await self._recover_cache(e)
                    result.merge(await self.full_resync())
                    result.merge(await self.push_pending())
                except CacheError as e:
                    logger.warning("Local cache write failed during sync", extra={"error": e.message})
                    result.fail(e)
            finally:
                self._status.syncing = False

            if result.ok:
                self._status.record_success()
            elif result.error_code != "REMOTE_DISABLED":
                self._status.record_failure(result.error or "sync failed", result.error_code)
            self._refresh_status()

            logger.info(
                "Sync cycle finished",
                extra={
                    "pushed": result.pushed,
                    "pulled": result.pulled,
                    "full_resync": result.full_resync,
                    "error_code": result.error_code,
                },
            )
            return result

    async def _run_cycle(self, result: SyncResult) -> None:
        if self._needs_full_resync or self._cache_version != CACHE_VERSION:
            result.merge(await self.full_resync())
            if result.auth_required:
                return
            result.merge(await self.push_pending())
            return

        result.merge(await self.push_pending())
        if result.auth_required:
            return
        pull = SyncResult()
        await self._pull(self._cursor, pull)
        result.merge(pull)

    async def run(self, interval: Optional[float] = None) -> None:
        """Sync periodically and consume the realtime feed until stop().

        After an authentication failure the loop idles until resume().
        """
        if self._running:
            logger.warning("Sync coordinator already running")
            return

        interval = interval if interval is not None else self.config.interval_seconds
        self._running = True
        self._stop.clear()
        logger.info("Starting sync loop", extra={"interval_seconds": interval, "user_id": self.user_id})

        try:
            if self.remote is not None:
                self._realtime_task = asyncio.ensure_future(self._consume_realtime())
            while not self._stop.is_set():
                await self._wait_resumed()
                if self._stop.is_set():
                    break
                self._wake.clear()
                await self.sync()
                await self._sleep(interval)
        except asyncio.CancelledError:
            logger.info("Sync loop cancelled")
            raise
        finally:
            self._running = False
            if self._realtime_task is not None:
                self._realtime_task.cancel()
                try:
                    await self._realtime_task
                except asyncio.CancelledError:
                    pass
                self._realtime_task = None

    async def _wait_resumed(self) -> None:
        if self._resumed.is_set():
            return
        stop = asyncio.ensure_future(self._stop.wait())
        resumed = asyncio.ensure_future(self._resumed.wait())
        try:
            await asyncio.wait({stop, resumed}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stop.cancel()
            resumed.cancel()

    async def _sleep(self, interval: float) -> None:
        """Sleep until the interval passes, an append wakes us, or stop()."""
        delay = interval
        if self._pending and self.backoff.attempt > 0:
            delay = min(delay, max(self.backoff.remaining(), 0.01))
        stop = asyncio.ensure_future(self._stop.wait())
        wake = asyncio.ensure_future(self._wake.wait())
        try:
            await asyncio.wait({stop, wake}, timeout=delay, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stop.cancel()
            wake.cancel()

    async def _consume_realtime(self) -> None:
        remote = self.remote
        if remote is None:
            return
        while not self._stop.is_set():
            await self._wait_resumed()
            if self._stop.is_set():
                return
            try:
                async for row in remote.subscribe():
                    await self.realtime_ingest(row)
                    if self._stop.is_set():
                        return
            except NotAuthenticatedError as e:
                self._handle_auth(e)
                self._refresh_status()
                continue
            except RemoteError as e:
                logger.warning("Realtime feed failed", extra={"error": e.message, "code": e.code})
            # Feed ended or failed; reconnect after a pause
            stop = asyncio.ensure_future(self._stop.wait())
            try:
                await asyncio.wait({stop}, timeout=self.config.backoff_max_seconds)
            finally:
                stop.cancel()

    async def stop(self) -> None:
        """Stop the background loop."""
        self._stop.set()
        self._wake.set()
        if self._running:
            logger.info("Stopping sync loop")

    def resume(self) -> None:
        """Resume syncing after an authentication failure (e.g. new session)."""
        self._status.auth_required = False
        self._status.offline = False
        self.backoff.reset()
        self._resumed.set()
        self._wake.set()
        self._refresh_status()
        logger.info("Sync resumed", extra={"user_id": self.user_id})
