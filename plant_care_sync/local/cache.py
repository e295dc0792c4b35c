"""
Read-through cache on top of the local store.

Keeps screen data (plant lists, locations) available offline. Keys are
prefixed with ``cache:`` so clearing the cache never touches the
mutation queue or the identifier map.
"""

from __future__ import annotations

from typing import Any

from .store import CacheEntry, LocalStore

CACHE_PREFIX = "cache:"


class ReadCache:
    """Cache of remote reads for offline viewing. No expiry; entries live until cleared."""

    def __init__(self, store: LocalStore):
        self.store = store

    @staticmethod
    def _key(key: str) -> str:
        return f"{CACHE_PREFIX}{key}"

    async def save(self, key: str, data: Any) -> bool:
        return await self.store.save(self._key(key), data)

    async def load(self, key: str) -> CacheEntry | None:
        entry = await self.store.load(self._key(key))
        if entry is None:
            return None
        entry.key = key
        return entry

    async def remove(self, key: str) -> bool:
        return await self.store.remove(self._key(key))

    async def clear(self) -> bool:
        """Remove every cached read, leaving queue and id map intact."""
        ok = True
        for key in await self.store.keys():
            if key.startswith(CACHE_PREFIX):
                ok = await self.store.remove(key) and ok
        return ok
