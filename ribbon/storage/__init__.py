"""
ribbon.storage - Durable backing for the quota trackers.

- KeyValueStore: async get/set protocol the trackers depend on
- InMemoryKeyValueStore / SQLiteKeyValueStore: concrete stores
- PersistedTable: whole-table JSON mirroring with a failure policy
"""
from .kv_store import InMemoryKeyValueStore, KeyValueStore, SQLiteKeyValueStore
from .persisted_table import PersistedTable

__all__ = [
    "InMemoryKeyValueStore",
    "KeyValueStore",
    "PersistedTable",
    "SQLiteKeyValueStore",
]
