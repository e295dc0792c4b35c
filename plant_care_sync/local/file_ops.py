"""
On-disk primitives for the file-backed local store.

Each store key maps to one JSON file. Writes land in a hidden sibling
file that is fsynced and then renamed over the target, so a crash
mid-write leaves the previous value in place.
"""

import json
import os
import uuid
from pathlib import Path
from typing import Any
from urllib.parse import quote, unquote

import aiofiles
import aiofiles.os

from ..exceptions import LocalStoreError

JSON_SUFFIX = ".json"
TEMP_PREFIX = ".tmp_"


def key_to_filename(key: str) -> str:
    """Encode a store key as a filename (``cache:plants`` -> ``cache%3Aplants.json``)."""
    return quote(key, safe="") + JSON_SUFFIX


def filename_to_key(filename: str) -> str | None:
    """Decode a filename produced by key_to_filename, or None for foreign files."""
    if filename.startswith(TEMP_PREFIX) or not filename.endswith(JSON_SUFFIX):
        return None
    return unquote(filename[: -len(JSON_SUFFIX)])


async def read_json(path: Path) -> Any | None:
    """Parsed contents of a JSON file.

    Returns:
        The decoded value, or None if the file is missing or empty

    Raises:
        LocalStoreError: If the file cannot be read or is not valid JSON
    """
    try:
        async with aiofiles.open(path, encoding="utf-8") as f:
            text = await f.read()
    except FileNotFoundError:
        return None
    except OSError as e:
        raise LocalStoreError("read", str(path), e) from e

    if not text.strip():
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise LocalStoreError("decode", str(path), e) from e


async def write_json_atomic(path: Path, data: Any) -> None:
    """Replace a file with the JSON encoding of data, all or nothing.

    Raises:
        LocalStoreError: If the directory, temp file or rename fails
    """
    text = json.dumps(data, ensure_ascii=False)
    staging = path.with_name(f"{TEMP_PREFIX}{uuid.uuid4().hex}{JSON_SUFFIX}")

    try:
        await aiofiles.os.makedirs(path.parent, exist_ok=True)
        async with aiofiles.open(staging, "w", encoding="utf-8") as f:
            await f.write(text)
            await f.flush()
            os.fsync(f.fileno())
        await aiofiles.os.replace(staging, path)
    except OSError as e:
        try:
            await aiofiles.os.remove(staging)
        except OSError:
            pass
        raise LocalStoreError("write", str(path), e) from e


async def remove_file(path: Path) -> bool:
    """Delete a file.

    Returns:
        False if there was nothing to delete
    """
    try:
        await aiofiles.os.remove(path)
    except FileNotFoundError:
        return False
    except OSError as e:
        raise LocalStoreError("remove", str(path), e) from e
    return True


async def list_json_files(directory: Path) -> list[str]:
    """Sorted names of the store's JSON files in a directory (staging files excluded)."""
    try:
        names = await aiofiles.os.listdir(directory)
    except FileNotFoundError:
        return []
    except OSError as e:
        raise LocalStoreError("list", str(directory), e) from e
    return sorted(n for n in names if filename_to_key(n) is not None)
