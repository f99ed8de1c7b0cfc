"""Request authentication."""

from __future__ import annotations

import logging
from typing import Protocol

import httpx
from starlette.requests import Request

logger = logging.getLogger(__name__)


def bearer_token(request: Request) -> str | None:
    header = request.headers.get("authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


class Authenticator(Protocol):
    async def authenticate(self, request: Request) -> str | None:
        """Return the caller's user id, or None if unauthenticated."""
        ...


class SupabaseAuthenticator:
    """Validates the bearer token against Supabase Auth (GET /auth/v1/user)."""

    def __init__(
        self,
        supabase_url: str,
        anon_key: str,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = f"{supabase_url.rstrip('/')}/auth/v1/user"
        self._anon_key = anon_key
        self._http = http_client or httpx.AsyncClient(timeout=httpx.Timeout(10.0))
        self._owns_http = http_client is None

    async def authenticate(self, request: Request) -> str | None:
        token = bearer_token(request)
        if token is None:
            return None
        try:
            response = await self._http.get(
                self._url,
                headers={"apikey": self._anon_key, "authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as e:
            logger.warning("Auth check failed: %s", e)
            return None
        if response.status_code != 200:
            return None
        return response.json().get("id")

    async def close(self) -> None:
        if self._owns_http:
            await self._http.aclose()


class StaticTokenAuthenticator:
    """Accepts fixed bearer tokens; for local development without Supabase."""

    def __init__(self, tokens: dict[str, str]) -> None:
        self._tokens = {t: u for t, u in tokens.items() if t}

    async def authenticate(self, request: Request) -> str | None:
        token = bearer_token(request)
        return self._tokens.get(token) if token else None
