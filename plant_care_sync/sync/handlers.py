"""
Per-entity replay handlers.

Each handler applies one queue entry against the remote datastore:
resolve temporary ids, upload any embedded photo, then perform the
primary mutation. Handlers raise on any failure; the sync engine turns
the exception into a per-entry error and leaves the entry queued.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, field
from typing import Any, TypeVar

from ..config import SyncConfig
from ..exceptions import InvalidQueueEntryError, PhotoUploadError, UnresolvedIdentifierError
from ..ids import TemporaryId, parse_id
from ..remote.base import RemoteDatastore
from .idmap import IdentifierMap
from .photos import PENDING_SEGMENT, decode_image, is_pending_path, photo_path
from .queue import EntityType, Operation, QueueEntry

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Field carrying a base64 photo captured offline
EMBEDDED_IMAGE_FIELD = "offlinePhoto"

# Fields that only exist on the client and must never reach the remote tables
CLIENT_ONLY_FIELDS = (EMBEDDED_IMAGE_FIELD, "isOffline", "pendingSync", "tempId")


@dataclass
class HandlerResult:
    """Outcome of a successfully applied entry."""

    real_id: str | None = None
    url: str | None = None
    warnings: list[str] = field(default_factory=list)


@dataclass
class HandlerContext:
    """Collaborators shared by all handlers during a sync pass."""

    remote: RemoteDatastore
    id_map: IdentifierMap
    config: SyncConfig

    async def call(self, fn: Callable[..., Coroutine[Any, Any, T]], *args: Any) -> T:
        """Run one remote call under the configured timeout."""
        async with asyncio.timeout(self.config.remote_timeout_s):
            return await fn(*args)

    async def require_resolved(self, field_name: str, value: Any) -> Any:
        """Resolve an id field, refusing to continue with an unmapped temporary id.

        Server ids come back as given, so an integer foreign key stays an integer.
        """
        resolved = await self.id_map.resolve(value)
        if isinstance(parse_id(resolved), TemporaryId):
            raise UnresolvedIdentifierError(field_name, str(resolved))
        return resolved

    async def upload(
        self, path: str, data: bytes, content_type: str, bucket: str | None = None
    ) -> str:
        """Upload photo bytes, returning the public URL."""
        try:
            return await self.call(
                self.remote.upload_object,
                bucket or self.config.photo_bucket,
                path,
                data,
                content_type,
            )
        except Exception as e:
            raise PhotoUploadError(path, str(e) or type(e).__name__, e) from e


def embedded_image(data: dict[str, Any], entry_id: str) -> tuple[bytes, str] | None:
    """The decoded offline photo of a payload (bytes, content type), if any.

    A data URL left in ``photo_url`` (used for local display) counts as
    an embedded image too; it must never be written to the remote row.
    """
    image = data.get(EMBEDDED_IMAGE_FIELD)
    if not image:
        photo_url = data.get("photo_url")
        if isinstance(photo_url, str) and photo_url.startswith("data:"):
            image = photo_url
    if not image:
        return None
    return decode_image(str(image), entry_id)


class EntityHandler(ABC):
    """Applies queue entries of one entity type."""

    entity_type: EntityType

    def __init__(self, ctx: HandlerContext):
        self.ctx = ctx

    @abstractmethod
    async def apply(self, entry: QueueEntry) -> HandlerResult:
        """Apply an entry remotely. Raises on failure."""
        ...


class TableHandler(EntityHandler):
    """Create/update/delete against the entity's remote table."""

    # Reference fields that may hold temporary ids of other entities
    foreign_keys: tuple[str, ...] = ()
    # Extra fields dropped before writing this entity
    dropped_fields: tuple[str, ...] = ()

    @property
    def table(self) -> str:
        return self.ctx.config.table_for(self.entity_type.value)

    def to_record(self, data: dict[str, Any]) -> dict[str, Any]:
        """Payload minus id, client-only fields and inline image data."""
        record = {
            k: v
            for k, v in data.items()
            if k != "id" and k not in CLIENT_ONLY_FIELDS and k not in self.dropped_fields
        }
        photo_url = record.get("photo_url")
        if isinstance(photo_url, str) and photo_url.startswith("data:"):
            del record["photo_url"]
        return record

    def photo_owner(self, data: dict[str, Any], target_id: str | None) -> str | None:
        """Entity id the photo path is keyed by."""
        return target_id

    async def _upload_for(
        self,
        entry: QueueEntry,
        data: dict[str, Any],
        owner: str | None,
        image: tuple[bytes, str],
    ) -> str:
        user_id = data.get("user_id")
        if not user_id:
            raise PhotoUploadError(entry.id, "payload has a photo but no user_id")
        if not owner:
            raise PhotoUploadError(entry.id, "photo has no owning entity id")
        payload, content_type = image
        path = photo_path(str(user_id), owner, entry.id, content_type)
        return await self.ctx.upload(path, payload, content_type)

    async def apply(self, entry: QueueEntry) -> HandlerResult:
        data = dict(entry.payload)
        for key in self.foreign_keys:
            if key in data:
                data[key] = await self.ctx.require_resolved(key, data[key])

        if entry.operation == Operation.CREATE:
            return await self.create(entry, data)
        if entry.operation == Operation.UPDATE:
            return await self.update(entry, data)
        if entry.operation == Operation.DELETE:
            return await self.delete(entry, data)
        raise InvalidQueueEntryError(
            "operation", f"Unknown action: {entry.operation}", str(entry.operation)
        )

    async def _target(self, data: dict[str, Any]) -> str:
        target = await self.ctx.require_resolved("id", data.get("id"))
        if not target:
            raise InvalidQueueEntryError("payload.id", "update/delete needs the id to mutate")
        return str(target)

    async def create(self, entry: QueueEntry, data: dict[str, Any]) -> HandlerResult:
        record = self.to_record(data)
        image = embedded_image(data, entry.id)
        if image:
            record["photo_url"] = await self._upload_for(
                entry, data, self.photo_owner(data, None), image
            )

        row = await self.ctx.call(self.ctx.remote.insert, self.table, record)
        real_id = str(row["id"])
        await self.ctx.id_map.record(entry.id, real_id)
        return HandlerResult(real_id=real_id, url=record.get("photo_url"))

    async def update(self, entry: QueueEntry, data: dict[str, Any]) -> HandlerResult:
        target = await self._target(data)
        changes = self.to_record(data)
        image = embedded_image(data, entry.id)
        if image:
            changes["photo_url"] = await self._upload_for(
                entry, data, self.photo_owner(data, target), image
            )

        if changes:
            await self.ctx.call(self.ctx.remote.update, self.table, target, changes)
        else:
            logger.debug(f"Nothing to update for {self.table}/{target}")
        return HandlerResult(real_id=target, url=changes.get("photo_url"))

    async def delete(self, entry: QueueEntry, data: dict[str, Any]) -> HandlerResult:
        target = await self._target(data)
        await self.ctx.call(self.ctx.remote.delete, self.table, target)
        return HandlerResult(real_id=target)


class LocationHandler(TableHandler):
    entity_type = EntityType.LOCATION


class ActionHandler(TableHandler):
    """Care actions; photos are filed under the plant they belong to."""

    entity_type = EntityType.ACTION
    foreign_keys = ("plant_id",)

    def photo_owner(self, data: dict[str, Any], target_id: str | None) -> str | None:
        return data.get("plant_id") or target_id


class PlantHandler(TableHandler):
    """Plants, with the two-phase photo upload on create.

    The plant's own id is part of its photo path but is unknown until
    the insert returns, so the photo is first uploaded under a
    ``pending`` placeholder, then re-uploaded under the real id and the
    row's ``photo_url`` updated.
    """

    entity_type = EntityType.PLANT
    foreign_keys = ("location_id",)
    dropped_fields = ("created_at",)

    async def create(self, entry: QueueEntry, data: dict[str, Any]) -> HandlerResult:
        image = embedded_image(data, entry.id)
        if not image:
            return await super().create(entry, data)

        record = self.to_record(data)
        record["photo_url"] = await self._upload_for(entry, data, PENDING_SEGMENT, image)

        row = await self.ctx.call(self.ctx.remote.insert, self.table, record)
        real_id = str(row["id"])
        await self.ctx.id_map.record(entry.id, real_id)
        result = HandlerResult(real_id=real_id, url=record["photo_url"])

        stored_url = row.get("photo_url") or record["photo_url"]
        if not is_pending_path(stored_url):
            return result

        # The plant now exists remotely; failing the entry here would
        # replay the insert and duplicate it, so degrade to the placeholder URL.
        try:
            final_url = await self._upload_for(entry, data, real_id, image)
            await self.ctx.call(
                self.ctx.remote.update, self.table, real_id, {"photo_url": final_url}
            )
            result.url = final_url
        except Exception as e:
            result.warnings.append(f"photo kept at placeholder path: {e}")
        return result


class PhotoHandler(EntityHandler):
    """Standalone photo uploads: payload ``{base64, path, bucket?}``."""

    entity_type = EntityType.PHOTO

    async def apply(self, entry: QueueEntry) -> HandlerResult:
        data = entry.payload
        image = data.get("base64")
        path = data.get("path")
        if not image or not path:
            raise PhotoUploadError(str(path or entry.id), "Missing base64 or path")

        # Directory segments may name entities created offline; the file name is left alone
        *dirs, filename = str(path).split("/")
        segments = [await self.ctx.require_resolved("path", s) or s for s in dirs]
        resolved_path = "/".join([*segments, filename])

        payload, content_type = decode_image(str(image), resolved_path)
        url = await self.ctx.upload(resolved_path, payload, content_type, data.get("bucket"))
        return HandlerResult(url=url)


def build_handlers(ctx: HandlerContext) -> dict[EntityType, EntityHandler]:
    """One handler per entity type."""
    handlers: list[EntityHandler] = [
        LocationHandler(ctx),
        PlantHandler(ctx),
        ActionHandler(ctx),
        PhotoHandler(ctx),
    ]
    return {h.entity_type: h for h in handlers}
