"""ID generation and parsing utilities for offline-created entities.

Centralizes the temporary id format so callers never need to
inspect id strings directly.

Temporary IDs: temp-{7 base36 chars}
Real IDs: whatever the remote datastore assigns (opaque)

Stored payloads keep plain strings; ``parse_id`` is the single place
where a string is classified into a tagged ``TemporaryId`` or ``RealId``.
"""

from __future__ import annotations

import secrets
import string
import uuid
from dataclasses import dataclass

TEMP_ID_PREFIX = "temp-"

_BASE36 = string.digits + string.ascii_lowercase
_TEMP_SUFFIX_LENGTH = 7


@dataclass(frozen=True)
class TemporaryId:
    """Client-generated placeholder for an entity not yet created remotely."""

    value: str

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class RealId:
    """Identifier assigned by the remote datastore."""

    value: str

    def __str__(self) -> str:
        return self.value


EntityId = TemporaryId | RealId


def new_temporary_id() -> TemporaryId:
    """Generate a fresh temporary id."""
    suffix = "".join(secrets.choice(_BASE36) for _ in range(_TEMP_SUFFIX_LENGTH))
    return TemporaryId(f"{TEMP_ID_PREFIX}{suffix}")


def new_queue_id() -> str:
    """Generate an opaque id for queue entries that do not create an entity."""
    return f"q-{uuid.uuid4().hex}"


def parse_id(value: str | None) -> EntityId | None:
    """Classify an id string. Returns None for missing or empty ids."""
    if not value:
        return None
    value = str(value)
    if value.startswith(TEMP_ID_PREFIX) and len(value) > len(TEMP_ID_PREFIX):
        return TemporaryId(value)
    return RealId(value)


def is_temporary(value: str | None) -> bool:
    """True if the string denotes a temporary id."""
    return isinstance(parse_id(value), TemporaryId)
