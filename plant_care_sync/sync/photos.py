"""
Embedded photo handling.

Photos taken offline are queued inline as base64 data URLs. At replay
time they are decoded and uploaded under a path derived from the
owning entity and the queue entry, so a retried upload overwrites the
same object instead of creating a new one.
"""

from __future__ import annotations

import base64
import binascii
import re

from ..exceptions import PhotoUploadError

DEFAULT_CONTENT_TYPE = "image/jpeg"

# Segment used for a plant whose server id is not known yet
PENDING_SEGMENT = "pending"

_DATA_URL = re.compile(
    r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?P<params>(;[^,;]*)*?);base64,(?P<data>.*)$",
    re.S,
)

_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
    "image/heic": "heic",
}


def decode_image(value: str, path: str = "<embedded>") -> tuple[bytes, str]:
    """Decode an embedded image.

    Accepts ``data:<mime>;base64,<payload>`` URLs and bare base64.

    Returns:
        Tuple of (bytes, content type)

    Raises:
        PhotoUploadError: If the value is not valid base64 image data
    """
    content_type = DEFAULT_CONTENT_TYPE
    payload = value.strip()

    if payload.startswith("data:"):
        match = _DATA_URL.match(payload)
        if match is None:
            raise PhotoUploadError(path, "malformed data URL")
        content_type = match.group("mime") or DEFAULT_CONTENT_TYPE
        payload = match.group("data")

    try:
        data = base64.b64decode("".join(payload.split()), validate=True)
    except (binascii.Error, ValueError) as e:
        raise PhotoUploadError(path, "invalid base64 data", e) from e

    if not data:
        raise PhotoUploadError(path, "empty image")
    return data, content_type


def extension_for(content_type: str) -> str:
    """File extension for an image content type."""
    return _EXTENSIONS.get(content_type.lower(), "jpg")


def photo_path(user_id: str, owner_id: str, entry_id: str, content_type: str) -> str:
    """Deterministic object path: ``{user}/{owner}/{entry}.{ext}``."""
    return f"{user_id}/{owner_id}/{entry_id}.{extension_for(content_type)}"


def is_pending_path(url: str | None) -> bool:
    """True if a stored URL still points at the placeholder location."""
    return bool(url) and f"/{PENDING_SEGMENT}/" in url
