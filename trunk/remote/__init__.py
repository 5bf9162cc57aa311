"""
Remote event store: the shared log all devices synchronize through.

- RemoteEventStore: protocol every backend implements
- HttpRemoteEventStore: PostgREST-style REST endpoint over httpx
- InMemoryRemoteEventStore: tests and local development
"""

from .base import RemoteEventStore, create_remote_store
from .http import HttpRemoteEventStore
from .memory import InMemoryRemoteEventStore
from .models import RemoteEventInsert, RemoteEventRow, parse_row

__all__ = [
    # Protocol and types
    "RemoteEventStore",
    "RemoteEventInsert",
    "RemoteEventRow",
    "parse_row",
    # Factory
    "create_remote_store",
    # Implementations
    "HttpRemoteEventStore",
    "InMemoryRemoteEventStore",
]
