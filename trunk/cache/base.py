"""
Local cache protocol.

The local cache is a device's durable copy of the event log plus the sync
bookkeeping that goes with it: the pull cursor, the cache layout version
and the set of local events not yet confirmed by the remote store.

Invariants:
    - Appending a local event and marking it pending is one atomic write
    - Merging remote events and advancing the cursor is one atomic write
    - Events are never removed; resetting sync state keeps every event
    - load() returns a consistent snapshot of all four parts

How to change safely:
    - Layout changes bump CACHE_VERSION so clients full-resync
    - Protocol changes require updating every implementation
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Protocol, Sequence, Set, runtime_checkable

from ..events.types import Event


@dataclass
class CacheSnapshot:
    """Everything the cache holds, read in one go.

    Attributes:
        events: Events in arrival order
        cursor: Greatest remote arrival time merged so far
        cache_version: Layout version the cache was written with
        pending: client_ids of local events awaiting remote confirmation
    """

    events: List[Event] = field(default_factory=list)
    cursor: Optional[str] = None
    cache_version: Optional[int] = None
    pending: Set[str] = field(default_factory=set)

    @property
    def pending_events(self) -> List[Event]:
        """Pending events in arrival order."""
        return [e for e in self.events if e.client_id in self.pending]


@runtime_checkable
class LocalCache(Protocol):
    """Durable local storage for the event log and sync state."""

    async def open(self) -> None:
        """Create storage if missing.

        Raises:
            CacheCorruptionError: If existing storage is unreadable
        """
        ...

    async def close(self) -> None:
        ...

    async def load(self) -> CacheSnapshot:
        """Read events, cursor, version and pending set.

        Raises:
            CacheCorruptionError: If stored data cannot be decoded
        """
        ...

    async def append_local(self, event: Event) -> bool:
        """Persist a locally created event and mark it pending.

        Returns:
            False if the client_id was already stored
        """
        ...

    async def merge_remote(self, events: Sequence[Event], cursor: Optional[str]) -> List[Event]:
        """Store remote events not yet present and set the cursor.

        A remote copy of a pending local event confirms it, so its
        client_id leaves the pending set.

        Returns:
            The events that were newly stored
        """
        ...

    async def mark_synced(self, client_ids: Sequence[str]) -> None:
        """Remove client_ids from the pending set."""
        ...

    async def reset_sync_state(self, cache_version: int) -> None:
        """Forget the cursor and pending set and stamp the layout version.

        Events are kept.
        """
        ...

    async def set_pending(self, client_ids: Sequence[str]) -> None:
        """Replace the pending set."""
        ...

    async def recover(self) -> None:
        """Discard unreadable storage and start empty."""
        ...
