"""
Mutation queue for offline changes.

Holds the ordered list of mutations the user made while offline and
persists it through the local store after every change. A single
queue is shared by every entity type so replay order matches the
order in which the user produced the mutations.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..exceptions import InvalidQueueEntryError, LocalStoreError, QueuePersistenceError
from ..ids import TemporaryId, new_queue_id, new_temporary_id, parse_id
from ..local.store import LocalStore, now_millis

logger = logging.getLogger(__name__)

QUEUE_KEY = "queue"


class EntityType(Enum):
    """Type of entity a queued mutation applies to."""

    LOCATION = "location"
    PLANT = "plant"
    ACTION = "action"
    PHOTO = "photo"


class Operation(Enum):
    """Type of mutation. Photo entries carry no operation; they are always an upload."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass
class QueueEntry:
    """A single pending mutation.

    Attributes:
        id: ``temp-<random>`` for creates (the new entity's temporary id),
            otherwise an opaque queue id
        entity_type: Entity the mutation targets
        operation: create/update/delete, None for photo uploads
        payload: Entity-shaped data
        enqueued_at: Epoch millis; informational only, never used for ordering
    """

    id: str
    entity_type: EntityType
    operation: Operation | None
    payload: dict[str, Any]
    enqueued_at: int = field(default_factory=now_millis)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the persisted layout."""
        return {
            "id": self.id,
            "type": self.entity_type.value,
            "action": self.operation.value if self.operation else None,
            "data": self.payload,
            "createdAt": self.enqueued_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> QueueEntry:
        """Create from the persisted layout. Raises KeyError/ValueError when malformed."""
        action = data.get("action")
        payload = data.get("data") or {}
        if not isinstance(payload, dict):
            raise ValueError(f"Queue entry {data.get('id')} has a non-object payload")
        return cls(
            id=data["id"],
            entity_type=EntityType(data["type"]),
            operation=Operation(action) if action else None,
            payload=payload,
            enqueued_at=int(data.get("createdAt") or 0),
        )


def _coerce_entity_type(value: EntityType | str) -> EntityType:
    try:
        return value if isinstance(value, EntityType) else EntityType(value)
    except ValueError:
        raise InvalidQueueEntryError("entity_type", "unknown entity type", str(value)) from None


def _coerce_operation(value: Operation | str | None) -> Operation | None:
    if value is None or isinstance(value, Operation):
        return value
    try:
        return Operation(value)
    except ValueError:
        raise InvalidQueueEntryError("operation", "unknown operation", str(value)) from None


class MutationQueue:
    """Persistent FIFO queue of pending mutations.

    The in-memory list is the source of truth once loaded; every change
    re-persists the whole list. All reads and writes go through one
    asyncio lock so a removal by a sync pass cannot clobber an enqueue
    made concurrently by the application.
    """

    def __init__(self, store: LocalStore, strict_durability: bool = False):
        """Initialize the mutation queue.

        Args:
            store: Local store the queue persists through
            strict_durability: Raise QueuePersistenceError when an enqueue
                cannot be persisted instead of keeping it in memory only
        """
        self.store = store
        self.strict_durability = strict_durability
        self._entries: list[QueueEntry] = []
        # Persisted entries this version cannot parse; kept so they are never lost
        self._unreadable: list[Any] = []
        self._loaded = False
        self._lock = asyncio.Lock()

    async def _ensure_loaded(self) -> None:
        """Load entries from the store if not already loaded.

        Entries enqueued while the store could not be read are kept in
        memory; once a read succeeds they are appended after the
        persisted ones and the merged list is written back.

        Raises:
            LocalStoreError: The store could not be read. Nothing is marked
                loaded, so the next call retries and nothing persisted is
                overwritten in the meantime.
        """
        if self._loaded:
            return

        try:
            cached = await self.store.load_strict(QUEUE_KEY)
        except LocalStoreError as e:
            if e.operation != "decode":
                logger.warning(f"Could not read the persisted queue; will retry: {e.cause}")
                raise
            logger.warning(f"Persisted queue is corrupt; starting with an empty queue: {e.cause}")
            cached = None

        entries: list[QueueEntry] = []
        unreadable: list[Any] = []
        if cached is not None:
            if isinstance(cached.data, list):
                for raw in cached.data:
                    try:
                        entries.append(QueueEntry.from_dict(raw))
                    except (AttributeError, KeyError, TypeError, ValueError) as e:
                        logger.warning(f"Keeping unreadable queue entry aside: {e}")
                        unreadable.append(raw)
            else:
                logger.warning("Persisted queue is not a list; starting with an empty queue")

        persisted_ids = {e.id for e in entries}
        held: list[QueueEntry] = []
        for e in self._entries:
            if e.id in persisted_ids:
                logger.warning(f"Dropping in-memory duplicate of persisted entry {e.id}")
            else:
                held.append(e)

        self._entries = entries + held
        self._unreadable = unreadable
        self._loaded = True

        if held:
            if await self._persist():
                logger.info(f"Persisted {len(held)} mutations queued while unreadable")
            else:
                logger.warning(f"{len(held)} queued mutations are still held in memory only")

    async def _persist(self) -> bool:
        """Persist the full list."""
        return await self.store.save(
            QUEUE_KEY, [e.to_dict() for e in self._entries] + self._unreadable
        )

    def _assign_id(self, operation: Operation | None, payload: dict[str, Any]) -> str:
        if operation != Operation.CREATE:
            return new_queue_id()

        for key in ("id", "tempId"):
            parsed = parse_id(payload.get(key))
            if isinstance(parsed, TemporaryId):
                payload.setdefault("id", parsed.value)
                return parsed.value
            if parsed is not None and key == "id":
                raise InvalidQueueEntryError(
                    "payload.id", "create payload must carry a temporary id", parsed.value
                )

        temp_id = new_temporary_id().value
        payload["id"] = temp_id
        return temp_id

    async def enqueue(
        self,
        entity_type: EntityType | str,
        operation: Operation | str | None,
        payload: dict[str, Any],
    ) -> QueueEntry:
        """Append a mutation to the end of the queue.

        Args:
            entity_type: Entity the mutation targets
            operation: create/update/delete; must be None for photo uploads
            payload: Entity data; copied, never mutated in place

        Returns:
            The created QueueEntry. If the queue cannot be read or written
            the entry is kept in memory (logged) and persisted once the
            store recovers, unless strict durability is enabled.

        Raises:
            InvalidQueueEntryError: Caller error, detected before anything is
                queued: an unknown type/operation, a type/operation pair that
                cannot be replayed, a create whose ``id`` is a server id, or a
                create reusing a temporary id that is already queued. A
                well-formed mutation never raises this.
            QueuePersistenceError: The queue could not be read or written and
                strict durability is on
        """
        kind = _coerce_entity_type(entity_type)
        op = _coerce_operation(operation)
        if kind == EntityType.PHOTO and op is not None:
            raise InvalidQueueEntryError("operation", "photo entries have no operation", op.value)
        if kind != EntityType.PHOTO and op is None:
            raise InvalidQueueEntryError("operation", f"{kind.value} entries need an operation")
        if not isinstance(payload, dict):
            raise InvalidQueueEntryError("payload", "payload must be a mapping")

        data = copy.deepcopy(payload)

        async with self._lock:
            read_error: LocalStoreError | None = None
            try:
                await self._ensure_loaded()
            except LocalStoreError as e:
                read_error = e

            entry_id = self._assign_id(op, data)
            if any(e.id == entry_id for e in self._entries):
                raise InvalidQueueEntryError("id", "an entry with this id is already queued", entry_id)

            if read_error is not None and self.strict_durability:
                raise QueuePersistenceError(
                    entry_id, "persisted queue could not be read"
                ) from read_error

            entry = QueueEntry(id=entry_id, entity_type=kind, operation=op, payload=data)
            self._entries.append(entry)

            if read_error is not None:
                logger.warning(
                    f"Queued {kind.value} mutation {entry.id} is held in memory "
                    "until the persisted queue can be read"
                )
            elif not await self._persist():
                if self.strict_durability:
                    self._entries.pop()
                    raise QueuePersistenceError(entry.id, "local store rejected the write")
                logger.warning(f"Queued {kind.value} mutation {entry.id} will not survive a restart")

        logger.debug(f"Queued {kind.value} {op.value if op else 'upload'} as {entry.id}")
        return entry

    async def peek_all(self) -> list[QueueEntry]:
        """Snapshot of pending entries in FIFO order.

        Raises:
            LocalStoreError: The persisted queue could not be read; handing
                out only the entries held in memory would break FIFO order
        """
        async with self._lock:
            await self._ensure_loaded()
            return [copy.deepcopy(e) for e in self._entries]

    async def remove(self, entry_id: str) -> bool:
        """Remove an entry and re-persist.

        Returns:
            True if the entry was found and the shorter queue persisted

        Raises:
            LocalStoreError: The persisted queue could not be read
        """
        async with self._lock:
            await self._ensure_loaded()

            original_count = len(self._entries)
            self._entries = [e for e in self._entries if e.id != entry_id]

            if len(self._entries) < original_count:
                return await self._persist()
            return False

    async def count(self) -> int:
        """Number of pending entries.

        While the persisted queue cannot be read this counts only the
        entries held in memory.
        """
        async with self._lock:
            try:
                await self._ensure_loaded()
            except LocalStoreError:
                pass
            return len(self._entries)

    async def clear(self) -> bool:
        """Drop every pending entry, persisted or held in memory.

        Returns:
            False if the persisted queue could not be removed; the queue
            is left unchanged in that case
        """
        async with self._lock:
            if not await self.store.remove(QUEUE_KEY):
                return False
            self._entries = []
            self._unreadable = []
            self._loaded = True
            return True
