"""Tests for the persistent mutation queue."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from plant_care_sync.exceptions import (
    InvalidQueueEntryError,
    LocalStoreError,
    QueuePersistenceError,
)
from plant_care_sync.ids import is_temporary
from plant_care_sync.local.store import FileLocalStore, MemoryLocalStore
from plant_care_sync.sync.queue import (
    QUEUE_KEY,
    EntityType,
    MutationQueue,
    Operation,
    QueueEntry,
)


def refuse_saves(store: MemoryLocalStore) -> None:
    async def refuse(key, data):
        return False

    store.save = refuse  # type: ignore[method-assign]


class TestEnqueue:
    """Tests for adding mutations."""

    @pytest.mark.asyncio
    async def test_create_gets_temporary_id(self, queue: MutationQueue):
        entry = await queue.enqueue("plant", "create", {"name": "Fern"})

        assert is_temporary(entry.id)
        assert entry.payload["id"] == entry.id
        assert entry.entity_type == EntityType.PLANT
        assert entry.operation == Operation.CREATE

    @pytest.mark.asyncio
    async def test_create_keeps_callers_temporary_id(self, queue: MutationQueue):
        """The UI may already display an entity under its temporary id."""
        entry = await queue.enqueue("location", "create", {"id": "temp-kitchen", "name": "Kitchen"})

        assert entry.id == "temp-kitchen"

    @pytest.mark.asyncio
    async def test_create_accepts_temp_id_field(self, queue: MutationQueue):
        entry = await queue.enqueue("plant", "create", {"tempId": "temp-fern123", "name": "Fern"})

        assert entry.id == "temp-fern123"
        assert entry.payload["id"] == "temp-fern123"

    @pytest.mark.asyncio
    async def test_create_with_real_id_is_rejected(self, queue: MutationQueue):
        with pytest.raises(InvalidQueueEntryError):
            await queue.enqueue("plant", "create", {"id": "42", "name": "Fern"})

    @pytest.mark.asyncio
    async def test_update_gets_opaque_id(self, queue: MutationQueue):
        entry = await queue.enqueue("plant", "update", {"id": "42", "name": "Big Fern"})

        assert entry.id.startswith("q-")
        assert entry.payload["id"] == "42"

    @pytest.mark.asyncio
    async def test_payload_is_copied(self, queue: MutationQueue):
        payload = {"name": "Fern", "tags": ["green"]}
        entry = await queue.enqueue("plant", "create", payload)

        payload["tags"].append("mutated")
        assert "id" not in payload
        assert entry.payload["tags"] == ["green"]
        assert (await queue.peek_all())[0].payload["tags"] == ["green"]

    @pytest.mark.asyncio
    async def test_photo_has_no_operation(self, queue: MutationQueue):
        entry = await queue.enqueue("photo", None, {"base64": "aGk=", "path": "u/p/x.jpg"})
        assert entry.operation is None

        with pytest.raises(InvalidQueueEntryError):
            await queue.enqueue("photo", "create", {"base64": "aGk=", "path": "u/p/x.jpg"})

    @pytest.mark.asyncio
    async def test_table_entities_need_an_operation(self, queue: MutationQueue):
        with pytest.raises(InvalidQueueEntryError):
            await queue.enqueue("plant", None, {"name": "Fern"})

    @pytest.mark.asyncio
    async def test_unknown_type_and_operation_rejected(self, queue: MutationQueue):
        with pytest.raises(InvalidQueueEntryError):
            await queue.enqueue("greenhouse", "create", {})
        with pytest.raises(InvalidQueueEntryError):
            await queue.enqueue("plant", "upsert", {})

    @pytest.mark.asyncio
    async def test_duplicate_create_id_rejected(self, queue: MutationQueue):
        await queue.enqueue("plant", "create", {"id": "temp-same"})

        with pytest.raises(InvalidQueueEntryError):
            await queue.enqueue("plant", "create", {"id": "temp-same"})
        assert await queue.count() == 1


class TestOrdering:
    """The queue is strictly FIFO."""

    @pytest.mark.asyncio
    async def test_peek_all_preserves_order(self, queue: MutationQueue):
        for i in range(5):
            await queue.enqueue("location", "create", {"name": f"room-{i}"})

        names = [e.payload["name"] for e in await queue.peek_all()]
        assert names == [f"room-{i}" for i in range(5)]

    @pytest.mark.asyncio
    async def test_concurrent_enqueues_are_all_kept(self, queue: MutationQueue):
        await asyncio.gather(
            *(queue.enqueue("location", "create", {"name": f"room-{i}"}) for i in range(20))
        )

        assert await queue.count() == 20

    @pytest.mark.asyncio
    async def test_remove_preserves_order_of_the_rest(self, queue: MutationQueue):
        entries = [await queue.enqueue("location", "create", {"name": n}) for n in "abc"]

        assert await queue.remove(entries[1].id) is True

        assert [e.payload["name"] for e in await queue.peek_all()] == ["a", "c"]

    @pytest.mark.asyncio
    async def test_remove_unknown_id(self, queue: MutationQueue):
        assert await queue.remove("q-missing") is False

    @pytest.mark.asyncio
    async def test_peek_returns_copies(self, queue: MutationQueue):
        await queue.enqueue("plant", "create", {"name": "Fern"})

        snapshot = await queue.peek_all()
        snapshot[0].payload["name"] = "changed"

        assert (await queue.peek_all())[0].payload["name"] == "Fern"


class TestPersistence:
    """Tests for persisting the queue through the local store."""

    @pytest.mark.asyncio
    async def test_queue_survives_restart(self, tmp_path: Path):
        first = MutationQueue(FileLocalStore(tmp_path))
        created = await first.enqueue("plant", "create", {"name": "Fern"})
        await first.enqueue("action", "create", {"plant_id": created.id, "type": "water"})

        reloaded = await MutationQueue(FileLocalStore(tmp_path)).peek_all()

        assert [e.entity_type for e in reloaded] == [EntityType.PLANT, EntityType.ACTION]
        assert reloaded[1].payload["plant_id"] == created.id

    @pytest.mark.asyncio
    async def test_persisted_layout(self, memory_store: MemoryLocalStore):
        queue = MutationQueue(memory_store)
        entry = await queue.enqueue("plant", "update", {"id": "42", "name": "Fern"})

        stored = await memory_store.load(QUEUE_KEY)
        assert stored is not None
        assert stored.data == [
            {
                "id": entry.id,
                "type": "plant",
                "action": "update",
                "data": {"id": "42", "name": "Fern"},
                "createdAt": entry.enqueued_at,
            }
        ]

    @pytest.mark.asyncio
    async def test_corrupt_queue_starts_empty(self, memory_store: MemoryLocalStore):
        await memory_store.save(QUEUE_KEY, {"not": "a list"})

        assert await MutationQueue(memory_store).count() == 0

    @pytest.mark.asyncio
    async def test_unreadable_entries_are_kept(self, memory_store: MemoryLocalStore):
        """Entries this version cannot parse are excluded but never dropped."""
        unknown = {"id": "q-1", "type": "greenhouse", "action": "create", "data": {}}
        good = QueueEntry("q-2", EntityType.PLANT, Operation.DELETE, {"id": "9"}, 1).to_dict()
        await memory_store.save(QUEUE_KEY, [unknown, good])

        queue = MutationQueue(memory_store)
        assert [e.id for e in await queue.peek_all()] == ["q-2"]

        await queue.remove("q-2")

        stored = await memory_store.load(QUEUE_KEY)
        assert stored is not None
        assert stored.data == [unknown]

    @pytest.mark.asyncio
    async def test_failed_persist_keeps_entry_in_memory(self, memory_store: MemoryLocalStore):
        queue = MutationQueue(memory_store)
        refuse_saves(memory_store)

        entry = await queue.enqueue("plant", "create", {"name": "Fern"})

        assert [e.id for e in await queue.peek_all()] == [entry.id]

    @pytest.mark.asyncio
    async def test_strict_durability_raises(self, memory_store: MemoryLocalStore):
        queue = MutationQueue(memory_store, strict_durability=True)
        refuse_saves(memory_store)

        with pytest.raises(QueuePersistenceError):
            await queue.enqueue("plant", "create", {"name": "Fern"})
        assert await queue.count() == 0

    @pytest.mark.asyncio
    async def test_clear(self, memory_store: MemoryLocalStore):
        queue = MutationQueue(memory_store)
        await queue.enqueue("plant", "create", {"name": "Fern"})

        assert await queue.clear() is True
        assert await queue.count() == 0
        assert await memory_store.load(QUEUE_KEY) is None


class TestUnreadableStore:
    """A failed read of the persisted queue never costs queued mutations."""

    @staticmethod
    async def seed(store: MemoryLocalStore, *names: str) -> None:
        queue = MutationQueue(store)
        for i, name in enumerate(names):
            await queue.enqueue("plant", "update", {"id": str(i), "name": name})

    @staticmethod
    async def names(store: MemoryLocalStore) -> list[str]:
        return [e.payload["name"] for e in await MutationQueue(store).peek_all()]

    @pytest.mark.asyncio
    async def test_enqueue_after_failed_read_keeps_persisted_entries(
        self, flaky_store: MemoryLocalStore
    ):
        await self.seed(flaky_store, "p0", "p1", "p2")
        restarted = MutationQueue(flaky_store)
        flaky_store.fail_reads = 1

        await restarted.enqueue("plant", "update", {"id": "9", "name": "after-restart"})

        assert await self.names(flaky_store) == ["p0", "p1", "p2"]

        # The next access reads the store again and appends the held entry
        assert await restarted.count() == 4
        assert await self.names(flaky_store) == ["p0", "p1", "p2", "after-restart"]

    @pytest.mark.asyncio
    async def test_remove_after_failed_read_is_retried(self, flaky_store: MemoryLocalStore):
        await self.seed(flaky_store, "p0", "p1")
        restarted = MutationQueue(flaky_store)
        flaky_store.fail_reads = 1

        with pytest.raises(LocalStoreError):
            await restarted.remove("missing")

        assert await restarted.remove("missing") is False
        assert await self.names(flaky_store) == ["p0", "p1"]

    @pytest.mark.asyncio
    async def test_peek_all_raises_until_readable(self, flaky_store: MemoryLocalStore):
        await self.seed(flaky_store, "p0")
        restarted = MutationQueue(flaky_store)
        flaky_store.fail_reads = 1

        with pytest.raises(LocalStoreError):
            await restarted.peek_all()

        assert [e.payload["name"] for e in await restarted.peek_all()] == ["p0"]

    @pytest.mark.asyncio
    async def test_count_covers_held_entries_while_unreadable(self, flaky_store: MemoryLocalStore):
        await self.seed(flaky_store, "p0")
        restarted = MutationQueue(flaky_store)
        flaky_store.fail_reads = 2

        await restarted.enqueue("plant", "update", {"id": "9", "name": "held"})

        assert await restarted.count() == 1
        assert await restarted.count() == 2

    @pytest.mark.asyncio
    async def test_strict_durability_raises_on_failed_read(self, flaky_store: MemoryLocalStore):
        await self.seed(flaky_store, "p0")
        restarted = MutationQueue(flaky_store, strict_durability=True)
        flaky_store.fail_reads = 1

        with pytest.raises(QueuePersistenceError):
            await restarted.enqueue("plant", "update", {"id": "9", "name": "held"})

        assert await self.names(flaky_store) == ["p0"]
        assert await restarted.count() == 1


class TestQueueEntry:
    """Tests for the persisted entry layout."""

    def test_legacy_photo_entry_without_action(self):
        entry = QueueEntry.from_dict(
            {"id": "q-1", "type": "photo", "data": {"base64": "aGk=", "path": "a/b.jpg"}}
        )

        assert entry.entity_type == EntityType.PHOTO
        assert entry.operation is None
        assert entry.enqueued_at == 0

    def test_non_object_payload_rejected(self):
        with pytest.raises(ValueError):
            QueueEntry.from_dict({"id": "q-1", "type": "plant", "action": "create", "data": [1]})
