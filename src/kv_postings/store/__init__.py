"""Reference ordered key-value stores and the segment namespace."""

from kv_postings.store.memory import MemoryKeyValueStore, MemoryTransaction
from kv_postings.store.namespace import TupleNamespace
from kv_postings.store.sqlite import SqliteKeyValueStore, SqliteTransaction


__all__ = [
    "MemoryKeyValueStore",
    "MemoryTransaction",
    "SqliteKeyValueStore",
    "SqliteTransaction",
    "TupleNamespace",
]
