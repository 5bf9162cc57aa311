"""
Trunk Test Suite.

This package contains:
- unit/: Unit tests (pure derivation, SQLite cache, HTTP remote via MockTransport)
- integration/: Sync coordinator against the in-memory remote store
- fixtures/: Shared derivation cases every client must reproduce
"""
