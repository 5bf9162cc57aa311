"""
Sync layer: keeps the local log and the remote log converging.

- SyncCoordinator: push, pull, realtime ingest, full resync, background loop
- Backoff: time-gated retry delays for failed pushes
- SyncStatusTracker: user-facing sync status signal
"""

from .coordinator import SyncCoordinator, SyncPhase, SyncResult
from .retry import Backoff
from .status import SyncState, SyncStatus, SyncStatusTracker

__all__ = [
    # Coordinator
    "SyncCoordinator",
    "SyncPhase",
    "SyncResult",
    # Retry
    "Backoff",
    # Status
    "SyncState",
    "SyncStatus",
    "SyncStatusTracker",
]
