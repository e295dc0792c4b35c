"""
Abstract remote datastore interface.

The sync engine only needs four operations from the hosted backend:
insert, update and delete on a table, plus a binary object upload.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class RemoteDatastore(ABC):
    """Abstract interface for the hosted datastore and object storage.

    Implementations raise ``RemoteError`` for rejected operations and
    ``RemoteConnectionError`` when the backend cannot be reached.
    """

    @abstractmethod
    async def insert(self, table: str, record: dict[str, Any]) -> dict[str, Any]:
        """Insert a record.

        Args:
            table: Table name
            record: Column values, without an id

        Returns:
            The stored row, including the server-assigned ``id``

        Raises:
            RemoteError: If the insert is rejected
        """
        ...

    @abstractmethod
    async def update(self, table: str, record_id: str, changes: dict[str, Any]) -> None:
        """Update a record by id.

        Args:
            table: Table name
            record_id: Server id of the row
            changes: Columns to change

        Raises:
            RemoteError: If the update is rejected
        """
        ...

    @abstractmethod
    async def delete(self, table: str, record_id: str) -> None:
        """Delete a record by id.

        Raises:
            RemoteError: If the delete is rejected
        """
        ...

    @abstractmethod
    async def upload_object(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: str,
    ) -> str:
        """Upload (or overwrite) an object.

        Args:
            bucket: Storage bucket
            path: Object path inside the bucket
            data: Object bytes
            content_type: MIME type

        Returns:
            Public URL of the object

        Raises:
            RemoteError: If the upload is rejected
        """
        ...

    async def close(self) -> None:
        """Close connections and cleanup resources."""
