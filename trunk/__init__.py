"""
Trunk - local-first, event-sourced goal tracking.

A user's goals ("sprouts") hang off a fixed taxonomy of life areas and are
paid for with an abstract resource economy (soil, water, sun). Every change
is an immutable event; all state is derived by replaying the log, so
independently implemented clients stay consistent by sharing one log.

Architecture:
    ┌──────────────┐  append_local_event   ┌──────────────────┐
    │ Collaborator │──────────────────────▶│ SyncCoordinator  │
    │  (UI / CLI)  │◀──── DerivedState ────│                  │
    └──────────────┘                       └───┬─────────┬────┘
                                               │         │ push / pull / realtime
                                               ▼         ▼
                                    ┌────────────┐   ┌──────────────────┐
                                    │ LocalCache │   │ RemoteEventStore │
                                    │  (SQLite)  │   │ (HTTP / memory)  │
                                    └─────┬──────┘   └──────────────────┘
                                          │ events
                                          ▼
                                    ┌────────────┐
                                    │  derive()  │  pure, deterministic
                                    └────────────┘

Invariants:
    - The event log is the source of truth; derived state is never persisted
    - Events are immutable and deduplicated by client_id
    - derive() never raises and performs no I/O
    - A local event is never lost: it stays pending until the remote has it

How to change safely:
    - Any change to derivation rules or SoilConstants bumps DERIVATION_VERSION
      and regenerates tests/fixtures/derivation_cases.json
    - Any change to the cache layout bumps CACHE_VERSION
"""

from ._version import __version__
from .derive import DerivedState, derive

__all__ = ["__version__", "DerivedState", "derive"]
