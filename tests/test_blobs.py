"""Tests for storage path building and the blob stores."""

import re
from datetime import UTC, datetime

import httpx
import pytest

from cyncro.errors import StorageError
from cyncro.storage.blobs import LocalBlobStore, SupabaseBlobStore, build_storage_path

NOW = datetime(2025, 6, 15, 12, 0, tzinfo=UTC)


class TestStoragePath:
    def test_user_scoped_and_timestamped(self):
        path = build_storage_path("user-1", "receipt.pdf", now=NOW)
        assert re.fullmatch(rf"user-1/{int(NOW.timestamp() * 1000)}-[0-9a-f]{{8}}_receipt\.pdf", path)

    def test_same_name_same_instant_differs(self):
        first = build_storage_path("user-1", "image.jpg", now=NOW)
        second = build_storage_path("user-1", "image.jpg", now=NOW)

        assert first != second
        assert first.split("_", 1)[1] == second.split("_", 1)[1] == "image.jpg"

    @pytest.mark.parametrize(
        ("name", "expected"),
        [
            ("Kvittering juni.pdf", "Kvittering_juni.pdf"),
            ("../../etc/passwd", ".._.._etc_passwd"),
            ("bilde (1).HEIC", "bilde__1_.HEIC"),
            ("smørbrød.jpg", "sm_rbr_d.jpg"),
        ],
    )
    def test_file_name_sanitized(self, name, expected):
        assert build_storage_path("u", name, now=NOW).split("_", 1)[1] == expected


class TestLocalBlobStore:
    @pytest.mark.asyncio
    async def test_writes_under_root(self, tmp_path):
        store = LocalBlobStore(tmp_path)

        await store.upload("user-1/1_a.png", b"\x89PNG", "image/png")

        assert (tmp_path / "user-1" / "1_a.png").read_bytes() == b"\x89PNG"

    @pytest.mark.asyncio
    async def test_escape_refused(self, tmp_path):
        store = LocalBlobStore(tmp_path / "root")

        with pytest.raises(StorageError, match="escapes root"):
            await store.upload("../outside.txt", b"x", "text/plain")
        assert not (tmp_path / "outside.txt").exists()


class TestSupabaseBlobStore:
    @pytest.mark.asyncio
    async def test_upload_request(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["url"] = str(request.url)
            seen["headers"] = request.headers
            seen["body"] = request.content
            return httpx.Response(200, json={"Key": "receipts/user-1/1_a.pdf"})

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        store = SupabaseBlobStore("https://proj.supabase.co/", "service-key", "receipts", http_client=client)

        await store.upload("user-1/1_a.pdf", b"%PDF", "application/pdf")

        assert seen["method"] == "POST"
        assert seen["url"] == "https://proj.supabase.co/storage/v1/object/receipts/user-1/1_a.pdf"
        assert seen["headers"]["authorization"] == "Bearer service-key"
        assert seen["headers"]["content-type"] == "application/pdf"
        assert seen["headers"]["x-upsert"] == "false"
        assert seen["body"] == b"%PDF"

    @pytest.mark.asyncio
    async def test_http_error_raises(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(
            lambda r: httpx.Response(409, json={"error": "Duplicate"})
        ))
        store = SupabaseBlobStore("https://proj.supabase.co", "k", "receipts", http_client=client)

        with pytest.raises(StorageError, match="HTTP 409"):
            await store.upload("user-1/1_a.pdf", b"x", "application/pdf")
