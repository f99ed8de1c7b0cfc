"""Write-once blob storage for uploaded attachment originals."""

from __future__ import annotations

import asyncio
import logging
import re
import uuid
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol

import httpx

from cyncro.errors import StorageError

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9.-]")


def build_storage_path(user_id: str, file_name: str, now: datetime | None = None) -> str:
    """User-scoped, timestamp-prefixed path with a sanitized file name.

    A random suffix on the prefix keeps same-named uploads in the same
    millisecond apart; the prefix never contains "_", so the name is
    everything after the first one.
    """
    now = now or datetime.now(UTC)
    millis = int(now.timestamp() * 1000)
    return f"{user_id}/{millis}-{uuid.uuid4().hex[:8]}_{_UNSAFE_CHARS.sub('_', file_name)}"


class BlobStore(Protocol):
    async def upload(self, path: str, data: bytes, content_type: str) -> None: ...


class LocalBlobStore:
    """Stores blobs on the local filesystem under a root directory."""

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root).resolve()

    def resolve(self, path: str) -> Path:
        target = (self._root / path).resolve()
        if not target.is_relative_to(self._root):
            raise StorageError(f"Storage path escapes root: {path}")
        return target

    async def upload(self, path: str, data: bytes, content_type: str) -> None:
        target = self.resolve(path)

        def _write() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)

        try:
            await asyncio.to_thread(_write)
        except OSError as e:
            raise StorageError(f"Failed to store {path}: {e}") from e
        logger.debug("Stored %d bytes at %s", len(data), target)


class SupabaseBlobStore:
    """Supabase Storage over its REST API."""

    def __init__(
        self,
        supabase_url: str,
        service_role_key: str,
        bucket: str,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = supabase_url.rstrip("/")
        self._key = service_role_key
        self._bucket = bucket
        self._http = http_client or httpx.AsyncClient(timeout=httpx.Timeout(30.0))
        self._owns_http = http_client is None

    async def upload(self, path: str, data: bytes, content_type: str) -> None:
        url = f"{self._base_url}/storage/v1/object/{self._bucket}/{path}"
        try:
            response = await self._http.post(
                url,
                content=data,
                headers={
                    "authorization": f"Bearer {self._key}",
                    "apikey": self._key,
                    "content-type": content_type,
                    "x-upsert": "false",
                },
            )
        except httpx.HTTPError as e:
            raise StorageError(f"Upload of {path} failed: {e}") from e
        if response.status_code >= 300:
            raise StorageError(f"Upload of {path} failed with HTTP {response.status_code}: {response.text[:200]}")

    async def close(self) -> None:
        if self._owns_http:
            await self._http.aclose()
