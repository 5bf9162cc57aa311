"""
Append-only in-memory event log.

The log is a device's copy of the shared history in arrival order. Local
events and events merged from the remote store land in the same flat
sequence; ordering for replay is the derivation engine's concern.

Invariants:
    - Events are never removed or replaced once appended
    - At most one event per client_id; a repeated id is a no-op
    - Length only grows, so it doubles as a version for memoization
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, Iterator, List, Optional

from .types import Event

logger = logging.getLogger(__name__)


class EventLog:
    """Arrival-ordered, client_id-deduplicated sequence of events.

    Example:
        >>> log = EventLog()
        >>> log.append(event)
        True
        >>> log.append(event)
        False
    """

    def __init__(self, events: Optional[Iterable[Event]] = None) -> None:
        self._events: List[Event] = []
        self._by_client_id: Dict[str, Event] = {}
        if events is not None:
            self.merge(events)

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self) -> Iterator[Event]:
        return iter(list(self._events))

    def __contains__(self, client_id: object) -> bool:
        return client_id in self._by_client_id

    def append(self, event: Event) -> bool:
        """Append an event unless its client_id is already present.

        Returns:
            True if the log grew
        """
        if event.client_id in self._by_client_id:
            logger.debug(
                "Skipping duplicate event",
                extra={"client_id": event.client_id, "event_type": event.type},
            )
            return False
        self._events.append(event)
        self._by_client_id[event.client_id] = event
        return True

    def merge(self, events: Iterable[Event]) -> List[Event]:
        """Append every event not already present.

        Returns:
            The events that were actually added, in input order
        """
        return [event for event in events if self.append(event)]

    def get(self, client_id: str) -> Optional[Event]:
        return self._by_client_id.get(client_id)

    @property
    def events(self) -> tuple[Event, ...]:
        """Snapshot of the log in arrival order."""
        return tuple(self._events)

    def client_ids(self) -> set[str]:
        return set(self._by_client_id)
