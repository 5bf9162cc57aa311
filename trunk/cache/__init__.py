"""
Local persistent cache of the event log and sync bookkeeping.

- SqliteLocalCache: one SQLite file per user (production)
- InMemoryLocalCache: dictionary-backed (tests, ephemeral sessions)
"""

from .base import CacheSnapshot, LocalCache
from .memory import InMemoryLocalCache
from .sqlite import SqliteLocalCache

__all__ = [
    "LocalCache",
    "CacheSnapshot",
    "SqliteLocalCache",
    "InMemoryLocalCache",
]
