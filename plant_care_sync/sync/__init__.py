"""
Offline mutation sync.

Queues mutations made while offline and replays them against the
remote datastore once connectivity returns, rewriting temporary ids
to server ids as creates succeed.
"""

from .engine import (
    SyncEngine,
    SyncEntryError,
    SyncResult,
    SyncState,
    SyncStatus,
    create_local_store,
    create_sync_engine,
)
from .idmap import IdentifierMap
from .queue import EntityType, MutationQueue, Operation, QueueEntry
from .trigger import SyncTrigger

__all__ = [
    "SyncEngine",
    "SyncEntryError",
    "SyncResult",
    "SyncState",
    "SyncStatus",
    "create_local_store",
    "create_sync_engine",
    "IdentifierMap",
    "EntityType",
    "MutationQueue",
    "Operation",
    "QueueEntry",
    "SyncTrigger",
]
