"""
Temporary id -> server id reconciliation map.

Once the create for a temporary id is applied remotely, the server id
is recorded here. Later queue entries that still reference the
temporary id (they were enqueued before the mapping existed) are
rewritten through ``resolve`` at replay time. Mappings are never
removed.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from ..exceptions import LocalStoreError
from ..ids import EntityId, RealId, TemporaryId, parse_id
from ..local.store import LocalStore

logger = logging.getLogger(__name__)

IDMAP_KEY = "idmap"


class IdentifierMap:
    """Persistent, monotonically growing map of temporary ids to real ids."""

    def __init__(self, store: LocalStore):
        self.store = store
        self._map: dict[str, str] = {}
        self._loaded = False
        self._lock = asyncio.Lock()

    async def _ensure_loaded(self) -> None:
        """Load the persisted map if not already loaded.

        Raises:
            LocalStoreError: The store could not be read. The map stays
                unloaded so the next call retries, and ``record`` will not
                write over the persisted mappings meanwhile.
        """
        if self._loaded:
            return

        try:
            cached = await self.store.load_strict(IDMAP_KEY)
        except LocalStoreError as e:
            if e.operation != "decode":
                logger.warning(f"Could not read the persisted id map; will retry: {e.cause}")
                raise
            logger.warning(f"Persisted id map is corrupt; starting with an empty map: {e.cause}")
            cached = None

        persisted: dict[str, str] = {}
        if cached is not None and isinstance(cached.data, dict):
            persisted = {str(k): str(v) for k, v in cached.data.items()}
        elif cached is not None:
            logger.warning("Persisted id map is not an object; starting with an empty map")

        # Mappings recorded while the store was unreadable
        held = {k: v for k, v in self._map.items() if k not in persisted}
        self._map = {**persisted, **held}
        self._loaded = True

        if held and not await self.store.save(IDMAP_KEY, dict(self._map)):
            logger.warning(f"{len(held)} id mappings are still held in memory only")

    async def resolve_id(self, entity_id: EntityId) -> EntityId:
        """Map a tagged id to its real id where one is known.

        Raises:
            LocalStoreError: The persisted map could not be read and the id
                is not among the mappings held in memory
        """
        if isinstance(entity_id, RealId):
            return entity_id
        real = self._map.get(entity_id.value)
        if real is None:
            await self._ensure_loaded()
            real = self._map.get(entity_id.value)
        return RealId(real) if real is not None else entity_id

    async def resolve(self, value: Any) -> Any:
        """Resolve an id value.

        Non-temporary values (including None) come back unchanged, with
        their original type. A temporary id with no mapping also comes
        back unchanged; callers must treat that as not yet resolvable.
        """
        parsed = parse_id(value)
        if not isinstance(parsed, TemporaryId):
            return value
        return str(await self.resolve_id(parsed))

    async def is_resolved(self, value: Any) -> bool:
        """False only for a temporary id that has no mapping yet."""
        parsed = parse_id(value)
        if parsed is None:
            return True
        return not isinstance(await self.resolve_id(parsed), TemporaryId)

    async def record(self, temp_id: str, real_id: str) -> bool:
        """Persist a temp -> real association.

        Never raises for a storage failure: by the time a mapping is
        recorded the remote create has already happened.

        Returns:
            True if the mapping was persisted. The mapping is kept in
            memory for the rest of the process either way, and is written
            out with the persisted map once the store can be read again.
        """
        if not isinstance(parse_id(temp_id), TemporaryId):
            raise ValueError(f"Not a temporary id: {temp_id}")
        if not isinstance(parse_id(real_id), RealId):
            raise ValueError(f"Not a server id: {real_id}")

        async with self._lock:
            try:
                await self._ensure_loaded()
            except LocalStoreError:
                pass

            existing = self._map.get(temp_id)
            if existing is not None and existing != real_id:
                logger.warning(f"Remapping {temp_id} from {existing} to {real_id}")
            self._map[temp_id] = real_id
            # Never write a partial map over one that could not be read
            saved = self._loaded and await self.store.save(IDMAP_KEY, dict(self._map))

        if not saved:
            logger.warning(f"Mapping {temp_id} -> {real_id} kept in memory only")
        return saved

    async def snapshot(self) -> dict[str, str]:
        """Copy of the current map.

        Raises:
            LocalStoreError: The persisted map could not be read
        """
        await self._ensure_loaded()
        return dict(self._map)
