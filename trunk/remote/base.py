"""
Remote event store protocol.

The remote store is the shared log every device pushes to and pulls from.
It stores one row per event, keyed by (user_id, client_id), and stamps
each row with a server-side arrival time (``created_at``) that the sync
coordinator uses as its pull cursor.

Invariants:
    - insert() of a known (user_id, client_id) raises DuplicateEventError
      and stores nothing
    - query_since() returns rows ascending by created_at, strictly after
      the cursor
    - created_at is assigned by the store and never decreases

How to change safely:
    - Protocol changes require updating all implementations
    - Error mapping must stay: auth -> NotAuthenticatedError,
      transient -> RemoteUnavailableError
"""

from __future__ import annotations

from abc import abstractmethod
from typing import TYPE_CHECKING, AsyncIterator, List, Optional, Protocol, runtime_checkable

from .models import RemoteEventInsert, RemoteEventRow

if TYPE_CHECKING:
    from ..config import RemoteConfig


@runtime_checkable
class RemoteEventStore(Protocol):
    """Protocol for remote event store backends.

    Example:
        >>> store = HttpRemoteEventStore(config)
        >>> row = await store.insert(RemoteEventInsert.from_event(event, "user-1"))
        >>> rows = await store.query_since(row.created_at)
    """

    @abstractmethod
    async def insert(self, row: RemoteEventInsert) -> RemoteEventRow:
        """Store one event row.

        Returns:
            The stored row with id and created_at

        Raises:
            DuplicateEventError: If the client_id is already stored
            NotAuthenticatedError: If the session is missing or rejected
            RemoteUnavailableError: For transient failures
        """
        ...

    @abstractmethod
    async def query_since(self, cursor: Optional[str]) -> List[RemoteEventRow]:
        """Rows that arrived after ``cursor`` (all rows when None).

        Raises:
            NotAuthenticatedError: If the session is missing or rejected
            RemoteUnavailableError: For transient failures
        """
        ...

    @abstractmethod
    def subscribe(self) -> AsyncIterator[RemoteEventRow]:
        """Realtime feed of rows inserted from now on.

        Rows may repeat rows already seen through query_since(); consumers
        deduplicate by client_id.
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release connections and end open subscriptions."""
        ...


def create_remote_store(config: "RemoteConfig") -> RemoteEventStore:
    """Factory function to create a remote store from configuration.

    Args:
        config: Remote configuration

    Returns:
        HttpRemoteEventStore when a URL is configured

    Raises:
        ValueError: If the remote is not configured
    """
    from .http import HttpRemoteEventStore

    if not config.enabled:
        raise ValueError("Remote store not configured (set TRUNK_REMOTE_URL)")
    return HttpRemoteEventStore(config)
