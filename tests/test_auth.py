"""Tests for bearer token parsing and the authenticators."""

import httpx
import pytest
from starlette.requests import Request

from cyncro.api.auth import StaticTokenAuthenticator, SupabaseAuthenticator, bearer_token


def _request(authorization: str | None = None) -> Request:
    headers = [(b"authorization", authorization.encode())] if authorization is not None else []
    return Request({"type": "http", "method": "GET", "path": "/", "headers": headers})


@pytest.mark.parametrize(
    ("header", "token"),
    [
        ("Bearer abc", "abc"),
        ("bearer abc ", "abc"),
        ("Basic abc", None),
        ("Bearer ", None),
        (None, None),
    ],
)
def test_bearer_token(header, token):
    assert bearer_token(_request(header)) == token


class TestSupabaseAuthenticator:
    @pytest.mark.asyncio
    async def test_valid_token(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["authorization"]
            seen["apikey"] = request.headers["apikey"]
            return httpx.Response(200, json={"id": "user-42", "email": "a@b.no"})

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        auth = SupabaseAuthenticator("https://proj.supabase.co", "anon-key", http_client=client)

        assert await auth.authenticate(_request("Bearer jwt-token")) == "user-42"
        assert seen == {
            "url": "https://proj.supabase.co/auth/v1/user",
            "auth": "Bearer jwt-token",
            "apikey": "anon-key",
        }

    @pytest.mark.asyncio
    async def test_rejected_token(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(401, json={})))
        auth = SupabaseAuthenticator("https://proj.supabase.co", "anon-key", http_client=client)

        assert await auth.authenticate(_request("Bearer expired")) is None

    @pytest.mark.asyncio
    async def test_missing_header_skips_call(self):
        calls = []
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: calls.append(r)))
        auth = SupabaseAuthenticator("https://proj.supabase.co", "anon-key", http_client=client)

        assert await auth.authenticate(_request()) is None
        assert calls == []


class TestStaticTokenAuthenticator:
    @pytest.mark.asyncio
    async def test_lookup(self):
        auth = StaticTokenAuthenticator({"dev": "dev-user", "": "nobody"})

        assert await auth.authenticate(_request("Bearer dev")) == "dev-user"
        assert await auth.authenticate(_request("Bearer other")) is None
        assert await auth.authenticate(_request()) is None
