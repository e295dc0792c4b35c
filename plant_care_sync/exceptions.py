"""
Custom exceptions for the offline sync engine.

Handlers and remote adapters raise these; the sync engine converts
them into per-entry errors so nothing escapes a sync pass.
"""


class SyncStorageError(Exception):
    """Base exception for all plant care sync errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class LocalStoreError(SyncStorageError):
    """Raised when a local store I/O operation fails."""

    def __init__(self, operation: str, key: str | None = None, cause: Exception | None = None):
        details = {"operation": operation}
        if key:
            details["key"] = key
        if cause:
            details["cause"] = str(cause)
        message = f"Local store error during {operation}"
        if key:
            message += f": {key}"
        super().__init__(message, details)
        self.operation = operation
        self.key = key
        self.cause = cause


class QueuePersistenceError(SyncStorageError):
    """Raised when the mutation queue cannot be persisted and durability is strict."""

    def __init__(self, entry_id: str, cause: str | None = None):
        details = {"entry_id": entry_id}
        if cause:
            details["cause"] = cause
        super().__init__(f"Queued mutation {entry_id} could not be persisted", details)
        self.entry_id = entry_id


class InvalidQueueEntryError(SyncStorageError):
    """Raised when a mutation cannot be queued as requested."""

    def __init__(self, field: str, reason: str, value: str | None = None):
        details = {"field": field, "reason": reason}
        if value is not None:
            details["value"] = value
        super().__init__(f"Invalid queue entry {field}: {reason}", details)
        self.field = field
        self.reason = reason
        self.value = value


class UnknownEntityTypeError(SyncStorageError):
    """Raised when a queue entry names an entity type with no handler."""

    def __init__(self, entity_type: str):
        super().__init__(f"Unknown type: {entity_type}", {"entity_type": entity_type})
        self.entity_type = entity_type


class UnresolvedIdentifierError(SyncStorageError):
    """Raised when a temporary id has no server id yet.

    The referenced entity's create has not been applied, so the remote
    call that depends on it must not be attempted in this pass.
    """

    def __init__(self, field: str, temp_id: str):
        super().__init__(
            f"Temporary id {temp_id} in {field} is not yet resolvable",
            {"field": field, "temp_id": temp_id},
        )
        self.field = field
        self.temp_id = temp_id


class RemoteError(SyncStorageError):
    """Raised when the remote datastore rejects an operation."""

    def __init__(
        self,
        operation: str,
        target: str,
        reason: str | None = None,
        status: int | None = None,
    ):
        details: dict = {"operation": operation, "target": target}
        if reason:
            details["reason"] = reason
        if status is not None:
            details["status"] = status
        message = f"Remote {operation} failed for {target}"
        if status is not None:
            message += f" (HTTP {status})"
        if reason:
            message += f": {reason}"
        super().__init__(message, details)
        self.operation = operation
        self.target = target
        self.reason = reason
        self.status = status


class RemoteConnectionError(SyncStorageError):
    """Raised when the remote datastore cannot be reached.

    Note: Named RemoteConnectionError to avoid shadowing the builtin ConnectionError.
    """

    def __init__(self, endpoint: str, cause: Exception | None = None):
        details = {"endpoint": endpoint}
        if cause:
            details["cause"] = str(cause)
        super().__init__(f"Connection failed to {endpoint}", details)
        self.endpoint = endpoint
        self.cause = cause


class PhotoUploadError(SyncStorageError):
    """Raised when an embedded photo cannot be decoded or uploaded."""

    def __init__(self, path: str, reason: str, cause: Exception | None = None):
        details = {"path": path, "reason": reason}
        if cause:
            details["cause"] = str(cause)
        super().__init__(f"Photo upload failed for {path}: {reason}", details)
        self.path = path
        self.reason = reason
        self.cause = cause


class ConfigError(SyncStorageError):
    """Raised when sync configuration is invalid."""

    def __init__(self, field: str, reason: str):
        super().__init__(f"Invalid configuration for {field}: {reason}", {"field": field})
        self.field = field
        self.reason = reason
