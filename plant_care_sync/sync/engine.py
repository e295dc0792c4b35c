"""
Synchronization engine for offline mutations.

Replays the mutation queue against the remote datastore:
- One pass drains a snapshot of the queue strictly in FIFO order
- Temporary ids are rewritten to server ids as creates succeed
- A failed entry stays queued and never blocks the entries behind it
- Concurrent triggers join the pass already in flight
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from ..config import SyncConfig
from ..exceptions import ConfigError, UnknownEntityTypeError
from ..local.sqlite import SQLiteLocalStore
from ..local.store import FileLocalStore, LocalStore, MemoryLocalStore
from ..logging_utils import SyncLoggerAdapter
from ..remote.base import RemoteDatastore
from ..remote.rest import RestRemote
from .handlers import HandlerContext, HandlerResult, build_handlers
from .idmap import IdentifierMap
from .queue import MutationQueue, QueueEntry

logger = logging.getLogger(__name__)


class SyncState(Enum):
    """Current state of the sync engine."""

    IDLE = "idle"
    SYNCING = "syncing"
    PAUSED = "paused"
    OFFLINE = "offline"
    ERROR = "error"


@dataclass
class SyncEntryError:
    """Why one queue entry could not be applied."""

    id: str | None
    entity_type: str | None
    operation: str | None
    error: str

    @classmethod
    def from_entry(cls, entry: QueueEntry, error: str) -> SyncEntryError:
        return cls(
            id=entry.id,
            entity_type=entry.entity_type.value,
            operation=entry.operation.value if entry.operation else None,
            error=error,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.entity_type,
            "action": self.operation,
            "error": self.error,
        }


@dataclass
class SyncResult:
    """Result of a sync pass."""

    success: bool
    synced: int = 0
    failed: int = 0
    errors: list[SyncEntryError] = field(default_factory=list)
    cancelled: bool = False
    duration_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "synced": self.synced,
            "failed": self.failed,
            "errors": [e.to_dict() for e in self.errors],
            "cancelled": self.cancelled,
            "duration_ms": self.duration_ms,
        }


@dataclass
class SyncStatus:
    """Snapshot for a "N pending" indicator."""

    state: SyncState
    pending_changes: int
    last_sync: datetime | None = None
    last_result: SyncResult | None = None

    @property
    def is_synced(self) -> bool:
        return self.pending_changes == 0 and self.state != SyncState.ERROR


class SyncEngine:
    """Offline mutation replay engine.

    Handles:
    - Draining the mutation queue in order, one entry at a time
    - Resolving temporary ids through the identifier map
    - Uploading embedded photos before the mutation that references them
    - Aggregating per-entry failures without aborting the pass
    """

    def __init__(
        self,
        queue: MutationQueue,
        id_map: IdentifierMap,
        remote: RemoteDatastore,
        config: SyncConfig | None = None,
    ):
        """Initialize the sync engine.

        Args:
            queue: Mutation queue to drain
            id_map: Temporary id -> server id map
            remote: Remote datastore the mutations are applied to
            config: Sync configuration
        """
        self.queue = queue
        self.id_map = id_map
        self.remote = remote
        self.config = config or SyncConfig()

        self._handlers = build_handlers(HandlerContext(remote, id_map, self.config))
        self._state = SyncState.IDLE
        self._paused = False
        self._online = True
        self._last_sync: datetime | None = None
        self._last_result: SyncResult | None = None
        self._inflight: asyncio.Task[SyncResult] | None = None
        self._cancel_requested = False

    @property
    def state(self) -> SyncState:
        """Get current sync state."""
        if self._inflight is not None:
            return SyncState.SYNCING
        if self._paused:
            return SyncState.PAUSED
        if not self._online:
            return SyncState.OFFLINE
        return self._state

    @property
    def is_syncing(self) -> bool:
        return self._inflight is not None

    async def get_status(self) -> SyncStatus:
        """Get current sync status."""
        return SyncStatus(
            state=self.state,
            pending_changes=await self.queue.count(),
            last_sync=self._last_sync,
            last_result=self._last_result,
        )

    async def sync_all(self) -> SyncResult:
        """Run one sync pass, or join the pass already in flight.

        Callers that arrive while a pass is running receive that pass's
        result; entries they queued meanwhile are left for the next pass.

        Returns:
            Aggregate result of the pass
        """
        if self._inflight is None:
            self._inflight = asyncio.create_task(self._guarded_pass())
        else:
            logger.debug("Sync pass already in flight; joining it")
        return await asyncio.shield(self._inflight)

    def cancel(self) -> bool:
        """Ask the running pass to stop after the entry it is applying.

        Returns:
            True if a pass was running
        """
        if self._inflight is None:
            return False
        self._cancel_requested = True
        return True

    async def _guarded_pass(self) -> SyncResult:
        try:
            return await self._run_pass()
        finally:
            self._inflight = None
            self._cancel_requested = False

    async def _run_pass(self) -> SyncResult:
        start = time.monotonic()
        result = SyncResult(success=True)

        try:
            # Entries queued after this point wait for the next pass
            entries = await self.queue.peek_all()

            if entries:
                logger.info(f"Starting sync of {len(entries)} items")

            for entry in entries:
                if self._cancel_requested:
                    result.cancelled = True
                    logger.info("Sync pass cancelled; remaining entries stay queued")
                    break
                await self._sync_entry(entry, result)

            result.success = result.failed == 0
        except Exception as e:
            logger.exception("Sync pass aborted")
            result.success = False
            result.errors.append(SyncEntryError(None, None, None, str(e)))

        result.duration_ms = int((time.monotonic() - start) * 1000)
        self._last_sync = datetime.now(UTC)
        self._last_result = result
        self._state = SyncState.IDLE if result.success else SyncState.ERROR

        if result.synced or result.failed:
            logger.info(f"Sync complete: {result.synced} synced, {result.failed} failed")
        return result

    async def _sync_entry(self, entry: QueueEntry, result: SyncResult) -> None:
        log = SyncLoggerAdapter.for_entry(logger, entry)
        log.debug(f"Processing item: {entry.entity_type.value} {entry.id}")

        outcome: HandlerResult
        try:
            handler = self._handlers.get(entry.entity_type)
            if handler is None:
                raise UnknownEntityTypeError(entry.entity_type.value)
            outcome = await handler.apply(entry)
        except Exception as e:
            message = self._describe(e)
            result.failed += 1
            result.errors.append(SyncEntryError.from_entry(entry, message))
            log.warning(f"Failed to sync {entry.entity_type.value}: {message}")
            return

        # Remove right away so a crash later in the pass cannot replay it
        if not await self.queue.remove(entry.id):
            log.warning(f"Applied {entry.id} but could not persist its removal from the queue")
        result.synced += 1

        for warning in outcome.warnings:
            log.warning(warning)
        log.debug(f"Synced {entry.entity_type.value}")

    def _describe(self, error: Exception) -> str:
        if isinstance(error, TimeoutError):
            return f"Remote call timed out after {self.config.remote_timeout_s}s"
        cause = getattr(error, "cause", None)
        if isinstance(cause, TimeoutError):
            return f"{error}: timed out after {self.config.remote_timeout_s}s"
        return str(error) or type(error).__name__

    def pause(self) -> None:
        """Mark sync as paused; triggers skip passes while paused."""
        self._paused = True

    def resume(self) -> None:
        """Resume sync operations."""
        self._paused = False

    @property
    def is_paused(self) -> bool:
        return self._paused

    def set_online(self, online: bool) -> None:
        """Record connectivity as observed by the trigger layer."""
        self._online = online

    @property
    def is_online(self) -> bool:
        return self._online

    async def close(self) -> None:
        """Close the remote adapter and the local store."""
        await self.remote.close()
        await self.queue.store.close()


async def create_local_store(config: SyncConfig) -> LocalStore:
    """Create and initialize the configured local store."""
    if config.store_backend == "memory":
        store: LocalStore = MemoryLocalStore(config.namespace)
    elif config.store_backend == "sqlite":
        store = SQLiteLocalStore(config.base_path / "sync.db", config.namespace)
    else:
        store = FileLocalStore(config.base_path, config.namespace)

    await store.initialize()
    return store


async def create_sync_engine(
    config: SyncConfig | None = None,
    remote: RemoteDatastore | None = None,
) -> SyncEngine:
    """Create and initialize a sync engine.

    Args:
        config: Sync configuration (read from the environment if omitted)
        remote: Remote datastore (a RestRemote is built from config if omitted)

    Returns:
        Initialized SyncEngine
    """
    if config is None:
        config = SyncConfig.from_environment()

    if remote is None:
        if not config.remote_url or not config.remote_api_key:
            raise ConfigError("remote_url", "remote_url and remote_api_key are required")
        remote = RestRemote(
            config.remote_url,
            config.remote_api_key,
            timeout_s=config.remote_timeout_s,
        )

    store = await create_local_store(config)
    queue = MutationQueue(store, strict_durability=config.strict_queue_durability)
    return SyncEngine(queue, IdentifierMap(store), remote, config)
