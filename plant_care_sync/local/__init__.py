"""
Durable local storage.

Key classes:
- LocalStore: Namespaced key-value contract that never raises
- MemoryLocalStore / FileLocalStore / SQLiteLocalStore: Backends
- ReadCache: ``cache:`` prefixed entries for offline viewing
"""

from .cache import CACHE_PREFIX, ReadCache
from .sqlite import SQLiteLocalStore
from .store import DEFAULT_NAMESPACE, CacheEntry, FileLocalStore, LocalStore, MemoryLocalStore

__all__ = [
    "LocalStore",
    "CacheEntry",
    "MemoryLocalStore",
    "FileLocalStore",
    "SQLiteLocalStore",
    "ReadCache",
    "CACHE_PREFIX",
    "DEFAULT_NAMESPACE",
]
