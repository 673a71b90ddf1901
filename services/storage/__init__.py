from services.storage.base import KeyValueStore
from services.storage.memory_store import InMemoryStore
from services.storage.sql_store import SQLModelStore

__all__ = [
    "KeyValueStore",
    "InMemoryStore",
    "SQLModelStore",
]
