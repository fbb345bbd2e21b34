"""Hecate Persistence - Tuning-Snapshots und Performance-Historie."""

from hecate.persistence.store import (
    KeyValueStore,
    MemoryStore,
    SQLiteStore,
    get_store,
    set_store,
)

__all__ = ["KeyValueStore", "MemoryStore", "SQLiteStore", "get_store", "set_store"]
