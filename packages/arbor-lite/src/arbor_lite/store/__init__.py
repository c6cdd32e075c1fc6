"""Local node stores: in-memory and SQLite."""

from __future__ import annotations

from arbor_lite.store.memory_store import InMemoryNodeStore
from arbor_lite.store.sqlite_store import SQLiteNodeStore

__all__ = ["InMemoryNodeStore", "SQLiteNodeStore"]
