"""
Sync status signal.

Presentation code subscribes here instead of polling the coordinator. The
user-facing state is computed from a few raw facts:

    syncing         a cycle is in flight
    offline         the last cycle failed (or no session)
    pending_upload  local events await confirmation
    synced          otherwise

Failure tracking (last error, consecutive failures, last failure time)
rides along so the UI can show more than a dot.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional

from ..events.types import utc_now_iso

logger = logging.getLogger(__name__)


class SyncState(str, Enum):
    SYNCED = "synced"
    SYNCING = "syncing"
    PENDING_UPLOAD = "pending_upload"
    OFFLINE = "offline"


@dataclass(frozen=True)
class SyncStatus:
    """Snapshot delivered to listeners.

    Attributes:
        state: User-facing state
        last_confirmed_at: Greatest remote arrival time merged (the cursor)
        pending_count: Local events awaiting confirmation
        last_error: Message of the most recent failure
        last_error_code: Error code of the most recent failure
        consecutive_failures: Failed cycles since the last success
        last_failure_at: When the most recent failure happened
        auth_required: Sync is paused until a new session is supplied
    """

    state: SyncState
    last_confirmed_at: Optional[str] = None
    pending_count: int = 0
    last_error: Optional[str] = None
    last_error_code: Optional[str] = None
    consecutive_failures: int = 0
    last_failure_at: Optional[str] = None
    auth_required: bool = False


Listener = Callable[[SyncStatus], None]


class SyncStatusTracker:
    """Holds the raw facts and notifies listeners on change."""

    def __init__(self) -> None:
        self._listeners: List[Listener] = []
        self.syncing = False
        self.offline = False
        self.auth_required = False
        self.pending_count = 0
        self.last_confirmed_at: Optional[str] = None
        self.last_error: Optional[str] = None
        self.last_error_code: Optional[str] = None
        self.consecutive_failures = 0
        self.last_failure_at: Optional[str] = None

    @property
    def state(self) -> SyncState:
        if self.syncing:
            return SyncState.SYNCING
        if self.offline or self.auth_required:
            return SyncState.OFFLINE
        if self.pending_count > 0:
            return SyncState.PENDING_UPLOAD
        return SyncState.SYNCED

    def snapshot(self) -> SyncStatus:
        return SyncStatus(
            state=self.state,
            last_confirmed_at=self.last_confirmed_at,
            pending_count=self.pending_count,
            last_error=self.last_error,
            last_error_code=self.last_error_code,
            consecutive_failures=self.consecutive_failures,
            last_failure_at=self.last_failure_at,
            auth_required=self.auth_required,
        )

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; it is called immediately with the current status.

        Returns:
            A function that unsubscribes the listener
        """
        self._listeners.append(listener)
        listener(self.snapshot())

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def notify(self) -> None:
        status = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(status)
            except Exception:
                logger.exception("Sync status listener failed")

    def record_failure(self, message: str, code: Optional[str] = None) -> None:
        self.offline = True
        self.last_error = message
        self.last_error_code = code
        self.consecutive_failures += 1
        self.last_failure_at = utc_now_iso()

    def record_success(self) -> None:
        self.offline = False
        self.last_error = None
        self.last_error_code = None
        self.consecutive_failures = 0
        self.last_failure_at = None
