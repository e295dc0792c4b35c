"""
SQLite-backed local store.

Keeps every namespace in a single ``kv`` table, which suits hosts that
already ship an application database file.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import aiosqlite

from ..exceptions import LocalStoreError
from .store import DEFAULT_NAMESPACE, LocalStore

logger = logging.getLogger(__name__)


class SQLiteLocalStore(LocalStore):
    """Local store persisted in SQLite via aiosqlite.

    Schema:
        kv(namespace TEXT, key TEXT, value TEXT, stored_at INTEGER,
           PRIMARY KEY (namespace, key))
    """

    def __init__(self, db_path: str | Path = ":memory:", namespace: str = DEFAULT_NAMESPACE):
        super().__init__(namespace)
        self.db_path = db_path
        self.conn: aiosqlite.Connection | None = None
        self._initialized = False

    @classmethod
    async def create(
        cls,
        db_path: str | Path = ":memory:",
        namespace: str = DEFAULT_NAMESPACE,
    ) -> SQLiteLocalStore:
        """Create and initialize a SQLite store."""
        store = cls(db_path, namespace)
        await store.initialize()
        return store

    async def initialize(self) -> None:
        """Open the connection and create the schema."""
        if self._initialized:
            return

        try:
            if self.db_path != ":memory:":
                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            self.conn = await aiosqlite.connect(str(self.db_path))
            await self.conn.execute("""
                CREATE TABLE IF NOT EXISTS kv (
                    namespace TEXT NOT NULL,
                    key TEXT NOT NULL,
                    value TEXT NOT NULL,
                    stored_at INTEGER NOT NULL,
                    PRIMARY KEY (namespace, key)
                )
            """)
            await self.conn.commit()
            self._initialized = True
            logger.info(f"SQLite local store initialized: {self.db_path}")
        except Exception as e:
            raise LocalStoreError("initialize", str(self.db_path), e) from e

    async def close(self) -> None:
        """Close the SQLite connection."""
        if self.conn:
            await self.conn.close()
            self.conn = None
        self._initialized = False

    def _require_conn(self) -> aiosqlite.Connection:
        if self.conn is None:
            raise LocalStoreError("access", str(self.db_path), RuntimeError("store not initialized"))
        return self.conn

    async def _write(self, key: str, value: dict[str, Any]) -> None:
        conn = self._require_conn()
        await conn.execute(
            "INSERT OR REPLACE INTO kv (namespace, key, value, stored_at) VALUES (?, ?, ?, ?)",
            (self.namespace, key, json.dumps(value), value.get("timestamp", 0)),
        )
        await conn.commit()

    async def _read(self, key: str) -> Any | None:
        conn = self._require_conn()
        async with conn.execute(
            "SELECT value FROM kv WHERE namespace = ? AND key = ?",
            (self.namespace, key),
        ) as cursor:
            row = await cursor.fetchone()
        return json.loads(row[0]) if row else None

    async def _delete(self, key: str) -> None:
        conn = self._require_conn()
        await conn.execute(
            "DELETE FROM kv WHERE namespace = ? AND key = ?",
            (self.namespace, key),
        )
        await conn.commit()

    async def _list_keys(self) -> list[str]:
        conn = self._require_conn()
        async with conn.execute(
            "SELECT key FROM kv WHERE namespace = ? ORDER BY key",
            (self.namespace,),
        ) as cursor:
            rows = await cursor.fetchall()
        return [row[0] for row in rows]
