"""
Plant Care Sync

Offline-first persistence and synchronization for the plant care app.

Provides:
- Durable local key-value storage (memory, JSON files, SQLite)
- A read cache so previously fetched data stays viewable offline
- A FIFO mutation queue with temporary ids for entities created offline
- Ordered replay against the hosted backend, including offline photos

Usage:

    >>> from plant_care_sync import SyncConfig, SyncTrigger, create_sync_engine
    >>> config = SyncConfig.from_yaml("~/.plant_care_sync/config.yaml")
    >>> engine = await create_sync_engine(config)
    >>> plant = await engine.queue.enqueue("plant", "create", {"name": "Fern", "user_id": uid})
    >>> await engine.queue.enqueue("action", "create", {"plant_id": plant.id, "type": "water"})
    >>> trigger = SyncTrigger(engine)
    >>> await trigger.start()
    ...
    >>> result = await trigger.set_online(True)
    >>> result.synced
    2
"""

from .config import SyncConfig

# Exceptions
from .exceptions import (
    ConfigError,
    InvalidQueueEntryError,
    LocalStoreError,
    PhotoUploadError,
    QueuePersistenceError,
    RemoteConnectionError,
    RemoteError,
    SyncStorageError,
    UnknownEntityTypeError,
    UnresolvedIdentifierError,
)
from .ids import EntityId, RealId, TemporaryId, new_temporary_id, parse_id

# Local storage
from .local import (
    CacheEntry,
    FileLocalStore,
    LocalStore,
    MemoryLocalStore,
    ReadCache,
    SQLiteLocalStore,
)
from .logging_utils import configure_structured_logging

# Remote adapters
from .remote import RemoteDatastore, RestRemote

# Sync
from .sync import (
    EntityType,
    IdentifierMap,
    MutationQueue,
    Operation,
    QueueEntry,
    SyncEngine,
    SyncEntryError,
    SyncResult,
    SyncState,
    SyncStatus,
    SyncTrigger,
    create_local_store,
    create_sync_engine,
)

__version__ = "0.1.0"

__all__ = [
    # Configuration
    "SyncConfig",
    # Exceptions
    "SyncStorageError",
    "ConfigError",
    "InvalidQueueEntryError",
    "LocalStoreError",
    "PhotoUploadError",
    "QueuePersistenceError",
    "RemoteConnectionError",
    "RemoteError",
    "UnknownEntityTypeError",
    "UnresolvedIdentifierError",
    # Identifiers
    "EntityId",
    "RealId",
    "TemporaryId",
    "new_temporary_id",
    "parse_id",
    # Local storage
    "CacheEntry",
    "FileLocalStore",
    "LocalStore",
    "MemoryLocalStore",
    "ReadCache",
    "SQLiteLocalStore",
    # Remote
    "RemoteDatastore",
    "RestRemote",
    # Sync
    "EntityType",
    "IdentifierMap",
    "MutationQueue",
    "Operation",
    "QueueEntry",
    "SyncEngine",
    "SyncEntryError",
    "SyncResult",
    "SyncState",
    "SyncStatus",
    "SyncTrigger",
    "create_local_store",
    "create_sync_engine",
    # Logging
    "configure_structured_logging",
    "__version__",
]
