"""
Shared test configuration and fixtures.

Provides an in-process fake of the hosted backend so sync behavior can
be tested without network access, plus store/queue/engine fixtures
wired to it.
"""

from __future__ import annotations

import asyncio
import base64
import itertools
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any

import pytest

from plant_care_sync.config import SyncConfig
from plant_care_sync.exceptions import RemoteError
from plant_care_sync.local.store import FileLocalStore, MemoryLocalStore
from plant_care_sync.remote.base import RemoteDatastore
from plant_care_sync.sync.engine import SyncEngine
from plant_care_sync.sync.idmap import IdentifierMap
from plant_care_sync.sync.queue import MutationQueue


class FakeRemote(RemoteDatastore):
    """
    In-memory stand-in for the hosted backend.

    Assigns sequential server ids per table, stores rows and objects,
    and records every call in order. Failures can be injected per
    table, per record id or per object path.
    """

    def __init__(self, delay: float = 0.0):
        self.delay = delay
        self.calls: list[tuple[str, ...]] = []
        self.tables: dict[str, dict[str, dict[str, Any]]] = {}
        self.objects: dict[str, bytes] = {}
        self.content_types: dict[str, str] = {}
        self.fail_tables: set[str] = set()
        self.fail_records: set[str] = set()
        self.fail_paths: set[str] = set()
        self.fail_uploads = False
        self.closed = False
        self._ids = itertools.count(100)

    async def _pause(self) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)

    def rows(self, table: str) -> list[dict[str, Any]]:
        return list(self.tables.get(table, {}).values())

    def inserts(self, table: str | None = None) -> list[tuple[str, ...]]:
        return [c for c in self.calls if c[0] == "insert" and (table is None or c[1] == table)]

    async def insert(self, table: str, record: dict[str, Any]) -> dict[str, Any]:
        self.calls.append(("insert", table))
        await self._pause()
        if table in self.fail_tables:
            raise RemoteError("insert", table, "rejected by test", 400)
        row = {**record, "id": str(next(self._ids))}
        self.tables.setdefault(table, {})[row["id"]] = row
        return dict(row)

    async def update(self, table: str, record_id: str, changes: dict[str, Any]) -> None:
        self.calls.append(("update", table, record_id))
        await self._pause()
        if table in self.fail_tables or record_id in self.fail_records:
            raise RemoteError("update", f"{table}/{record_id}", "rejected by test", 400)
        self.tables.setdefault(table, {}).setdefault(record_id, {"id": record_id}).update(changes)

    async def delete(self, table: str, record_id: str) -> None:
        self.calls.append(("delete", table, record_id))
        await self._pause()
        if table in self.fail_tables or record_id in self.fail_records:
            raise RemoteError("delete", f"{table}/{record_id}", "rejected by test", 400)
        self.tables.get(table, {}).pop(record_id, None)

    async def upload_object(self, bucket: str, path: str, data: bytes, content_type: str) -> str:
        self.calls.append(("upload", bucket, path))
        await self._pause()
        if self.fail_uploads or path in self.fail_paths:
            raise RemoteError("upload", f"{bucket}/{path}", "storage unavailable", 503)
        self.objects[f"{bucket}/{path}"] = data
        self.content_types[f"{bucket}/{path}"] = content_type
        return f"https://storage.test/{bucket}/{path}"

    async def close(self) -> None:
        self.closed = True


class FlakyLocalStore(MemoryLocalStore):
    """Memory store whose next ``fail_reads`` reads fail like a locked database."""

    def __init__(self):
        super().__init__()
        self.fail_reads = 0

    async def _read(self, key: str) -> Any | None:
        if self.fail_reads:
            self.fail_reads -= 1
            raise OSError("database is locked")
        return await super()._read(key)


@pytest.fixture
def config() -> SyncConfig:
    """Configuration with a short timeout so timeout tests stay fast."""
    return SyncConfig(store_backend="memory", remote_timeout_s=1.0, auto_sync_interval_s=0.05)


@pytest.fixture
def memory_store() -> MemoryLocalStore:
    return MemoryLocalStore()


@pytest.fixture
def flaky_store() -> FlakyLocalStore:
    return FlakyLocalStore()


@pytest.fixture
async def file_store(tmp_path: Path) -> AsyncIterator[FileLocalStore]:
    store = FileLocalStore(tmp_path)
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture
def remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture
def queue(memory_store: MemoryLocalStore) -> MutationQueue:
    return MutationQueue(memory_store)


@pytest.fixture
def id_map(memory_store: MemoryLocalStore) -> IdentifierMap:
    return IdentifierMap(memory_store)


@pytest.fixture
def engine(
    queue: MutationQueue, id_map: IdentifierMap, remote: FakeRemote, config: SyncConfig
) -> SyncEngine:
    return SyncEngine(queue, id_map, remote, config)


@pytest.fixture
def png_bytes() -> bytes:
    return b"\x89PNG\r\n\x1a\nfake-image-bytes"


@pytest.fixture
def png_data_url(png_bytes: bytes) -> str:
    """An offline photo as the UI embeds it."""
    return "data:image/png;base64," + base64.b64encode(png_bytes).decode()
