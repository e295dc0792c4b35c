"""
HTTP adapter for a PostgREST-style hosted backend.

Talks to the two APIs the plant tracker's backend exposes:
- Data API: ``{url}/rest/v1/{table}`` (insert, filter-by-id update/delete)
- Storage API: ``{url}/storage/v1/object/{bucket}/{path}`` (upsert upload)

Example:
    >>> async with RestRemote(url="https://xyz.example.co", api_key=key) as remote:
    ...     row = await remote.insert("plants", {"name": "Monstera"})
"""

from __future__ import annotations

import json
import logging
from typing import Any
from urllib.parse import quote

import aiohttp

from ..exceptions import RemoteConnectionError, RemoteError
from .base import RemoteDatastore

logger = logging.getLogger(__name__)


class RestRemote(RemoteDatastore):
    """RemoteDatastore backed by aiohttp."""

    def __init__(
        self,
        url: str,
        api_key: str,
        access_token: str | None = None,
        timeout_s: float = 30.0,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        """Initialize the adapter.

        Args:
            url: Base URL of the backend project
            api_key: Project API key (sent as ``apikey``)
            access_token: User access token; falls back to the API key
            timeout_s: Total timeout per HTTP request
            session: Optional externally managed client session
        """
        self.url = url.rstrip("/")
        self.api_key = api_key
        self.access_token = access_token
        self.timeout_s = timeout_s
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> RestRemote:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def _headers(self) -> dict[str, str]:
        return {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.access_token or self.api_key}",
        }

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers=self._headers(),
                timeout=aiohttp.ClientTimeout(total=self.timeout_s),
            )
            self._owns_session = True
        return self._session

    def _table_url(self, table: str) -> str:
        return f"{self.url}/rest/v1/{quote(table, safe='')}"

    def _object_path(self, bucket: str, path: str) -> str:
        return f"{quote(bucket, safe='')}/{quote(path.lstrip('/'), safe='/')}"

    def public_url(self, bucket: str, path: str) -> str:
        """Public URL of an object in a public bucket."""
        return f"{self.url}/storage/v1/object/public/{self._object_path(bucket, path)}"

    async def _request(
        self,
        method: str,
        url: str,
        operation: str,
        target: str,
        **kwargs: Any,
    ) -> Any:
        session = self._get_session()
        headers = kwargs.pop("headers", None) or self._headers()
        try:
            async with session.request(method, url, headers=headers, **kwargs) as response:
                body = await response.text()
                if response.status >= 400:
                    raise RemoteError(operation, target, _error_reason(body), response.status)
                if not body:
                    return None
                try:
                    return json.loads(body)
                except json.JSONDecodeError:
                    return body
        except aiohttp.ClientError as e:
            raise RemoteConnectionError(self.url, e) from e

    async def insert(self, table: str, record: dict[str, Any]) -> dict[str, Any]:
        rows = await self._request(
            "POST",
            self._table_url(table),
            "insert",
            table,
            json=record,
            headers={**self._headers(), "Prefer": "return=representation"},
        )
        row = rows[0] if isinstance(rows, list) and rows else rows
        if not isinstance(row, dict) or row.get("id") is None:
            raise RemoteError("insert", table, "response did not include the created row")
        row["id"] = str(row["id"])
        return row

    async def update(self, table: str, record_id: str, changes: dict[str, Any]) -> None:
        await self._request(
            "PATCH",
            self._table_url(table),
            "update",
            f"{table}/{record_id}",
            params={"id": f"eq.{record_id}"},
            json=changes,
        )

    async def delete(self, table: str, record_id: str) -> None:
        await self._request(
            "DELETE",
            self._table_url(table),
            "delete",
            f"{table}/{record_id}",
            params={"id": f"eq.{record_id}"},
        )

    async def upload_object(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: str,
    ) -> str:
        object_path = self._object_path(bucket, path)
        await self._request(
            "POST",
            f"{self.url}/storage/v1/object/{object_path}",
            "upload",
            f"{bucket}/{path}",
            data=data,
            headers={**self._headers(), "Content-Type": content_type, "x-upsert": "true"},
        )
        logger.debug(f"Uploaded {len(data)} bytes to {bucket}/{path}")
        return self.public_url(bucket, path)

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None


def _error_reason(body: str) -> str:
    """Pull the human-readable message out of an error response body."""
    try:
        parsed = json.loads(body)
    except json.JSONDecodeError:
        return body[:200]
    if isinstance(parsed, dict):
        for key in ("message", "error_description", "error", "msg"):
            if parsed.get(key):
                return str(parsed[key])
    return body[:200]
