"""
Durable local key-value store.

Every key lives under one namespace and holds a cache entry of the
form ``{"data": ..., "timestamp": <epoch millis>}``. The mutation queue,
the identifier map and read caches all persist through this surface.

The public methods never raise: a failed save or a corrupt value is
logged and reported as ``False`` / ``None``, because losing soft state
is not fatal. Owners that need stronger guarantees (the mutation
queue, the identifier map) check the boolean results and read through
``load_strict``, which raises instead of answering ``None``.
"""

from __future__ import annotations

import json
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..exceptions import LocalStoreError
from .file_ops import (
    filename_to_key,
    key_to_filename,
    list_json_files,
    read_json,
    remove_file,
    write_json_atomic,
)

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACE = "tt"


def now_millis() -> int:
    """Current wall clock time in epoch milliseconds."""
    return int(time.time() * 1000)


@dataclass
class CacheEntry:
    """A stored value and the time it was saved."""

    key: str
    data: Any
    stored_at: int

    def to_dict(self) -> dict[str, Any]:
        return {"data": self.data, "timestamp": self.stored_at}

    @classmethod
    def from_dict(cls, key: str, raw: Any) -> CacheEntry:
        """Rebuild from the stored mapping. Raises ValueError on a malformed value."""
        if not isinstance(raw, dict) or "data" not in raw:
            raise ValueError(f"Malformed cache entry for {key}")
        stored_at = raw.get("timestamp", 0)
        if not isinstance(stored_at, int):
            raise ValueError(f"Malformed timestamp for {key}")
        return cls(key=key, data=raw["data"], stored_at=stored_at)


class LocalStore(ABC):
    """Abstract namespaced key-value store.

    Subclasses implement the raw primitives (``_write``, ``_read``,
    ``_delete``, ``_list_keys``), which may raise. The public contract
    wraps them and swallows failures.
    """

    def __init__(self, namespace: str = DEFAULT_NAMESPACE):
        self.namespace = namespace

    async def initialize(self) -> None:
        """Prepare the persistence medium. Default is a no-op."""

    async def close(self) -> None:
        """Release resources. Default is a no-op."""

    async def __aenter__(self) -> LocalStore:
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Raw primitives
    # ------------------------------------------------------------------

    @abstractmethod
    async def _write(self, key: str, value: dict[str, Any]) -> None: ...

    @abstractmethod
    async def _read(self, key: str) -> Any | None: ...

    @abstractmethod
    async def _delete(self, key: str) -> None: ...

    @abstractmethod
    async def _list_keys(self) -> list[str]: ...

    # ------------------------------------------------------------------
    # Public contract
    # ------------------------------------------------------------------

    async def save(self, key: str, data: Any) -> bool:
        """Store data under key with the current timestamp.

        Returns:
            True on success, False on any storage or serialization failure
        """
        entry = CacheEntry(key=key, data=data, stored_at=now_millis())
        try:
            # Fail on unserializable data here rather than half-way through a write
            value = json.loads(json.dumps(entry.to_dict()))
            await self._write(key, value)
            return True
        except Exception as e:
            logger.warning(f"Failed to save {self.namespace}/{key}: {e}")
            return False

    async def load(self, key: str) -> CacheEntry | None:
        """Load the entry stored under key, or None if missing or unreadable."""
        try:
            return await self.load_strict(key)
        except LocalStoreError as e:
            logger.warning(f"Failed to load {self.namespace}/{key}: {e.details.get('cause', e)}")
            return None

    async def load_strict(self, key: str) -> CacheEntry | None:
        """Load the entry stored under key, telling a missing key from a failed read.

        Owners of state that is rewritten wholesale (the mutation queue,
        the identifier map) use this so a transient read failure is never
        mistaken for "nothing stored yet".

        Returns:
            The entry, or None only if nothing is stored under key

        Raises:
            LocalStoreError: ``operation="decode"`` when the stored value is
                corrupt; any other operation means the store could not be read
        """
        try:
            raw = await self._read(key)
        except LocalStoreError:
            raise
        except ValueError as e:
            raise LocalStoreError("decode", key, e) from e
        except Exception as e:
            raise LocalStoreError("read", key, e) from e

        if raw is None:
            return None
        try:
            return CacheEntry.from_dict(key, raw)
        except ValueError as e:
            raise LocalStoreError("decode", key, e) from e

    async def remove(self, key: str) -> bool:
        """Remove a single key. Removing a missing key succeeds."""
        try:
            await self._delete(key)
            return True
        except Exception as e:
            logger.warning(f"Failed to remove {self.namespace}/{key}: {e}")
            return False

    async def keys(self) -> list[str]:
        """List keys under the namespace (empty on failure)."""
        try:
            return await self._list_keys()
        except Exception as e:
            logger.warning(f"Failed to list keys in {self.namespace}: {e}")
            return []

    async def clear_all(self) -> bool:
        """Remove every key under the namespace."""
        try:
            for key in await self._list_keys():
                await self._delete(key)
            return True
        except Exception as e:
            logger.warning(f"Failed to clear namespace {self.namespace}: {e}")
            return False


class MemoryLocalStore(LocalStore):
    """In-process store. Nothing survives the process; used for tests and ephemeral sessions."""

    def __init__(self, namespace: str = DEFAULT_NAMESPACE):
        super().__init__(namespace)
        self._values: dict[str, str] = {}

    async def _write(self, key: str, value: dict[str, Any]) -> None:
        self._values[key] = json.dumps(value)

    async def _read(self, key: str) -> Any | None:
        raw = self._values.get(key)
        return json.loads(raw) if raw is not None else None

    async def _delete(self, key: str) -> None:
        self._values.pop(key, None)

    async def _list_keys(self) -> list[str]:
        return sorted(self._values)


class FileLocalStore(LocalStore):
    """File-backed store: one JSON file per key.

    Directory structure:
        {base_path}/{namespace}/
            queue.json
            idmap.json
            cache%3A{key}.json
    """

    def __init__(self, base_path: Path | str, namespace: str = DEFAULT_NAMESPACE):
        super().__init__(namespace)
        self.base_path = Path(base_path)
        self.directory = self.base_path / namespace

    def _path(self, key: str) -> Path:
        return self.directory / key_to_filename(key)

    async def _write(self, key: str, value: dict[str, Any]) -> None:
        await write_json_atomic(self._path(key), value)

    async def _read(self, key: str) -> Any | None:
        return await read_json(self._path(key))

    async def _delete(self, key: str) -> None:
        await remove_file(self._path(key))

    async def _list_keys(self) -> list[str]:
        names = await list_json_files(self.directory)
        return [k for k in (filename_to_key(n) for n in names) if k is not None]
