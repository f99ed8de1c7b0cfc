"""LLM provider interface.

Every vendor adapter implements LLMProvider. The orchestrator only ever
sees the vendor-neutral types from cyncro.llm.types, so adding a vendor
means writing one adapter and nothing else.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx

from cyncro.errors import ProviderCallError, ProviderNotConfiguredError
from cyncro.llm.types import (
    ChatOptions,
    ImageMediaType,
    LLMResponse,
    Message,
    Tool,
    VisionOptions,
)

logger = logging.getLogger(__name__)


class LLMProvider(ABC):
    """Base class for vendor adapters talking to their REST API over httpx."""

    name: str = ""
    api_key_env: str = ""
    fallback_model: str = ""

    def __init__(
        self,
        api_key: str = "",
        default_model: str | None = None,
        base_url: str = "",
        http_client: httpx.AsyncClient | None = None,
        timeout: httpx.Timeout | None = None,
    ) -> None:
        self._api_key = api_key
        self._default_model = default_model or self.fallback_model
        self._base_url = base_url.rstrip("/")
        self._http = http_client
        self._owns_http = http_client is None
        self._timeout = timeout or httpx.Timeout(connect=10.0, read=120.0, write=10.0, pool=10.0)

    # ------------------------------------------------------------------
    # Public contract
    # ------------------------------------------------------------------

    def is_configured(self) -> bool:
        """True iff an API key is present."""
        return bool(self._api_key)

    def get_default_model(self) -> str:
        return self._default_model

    @abstractmethod
    async def chat(self, messages: list[Message], options: ChatOptions | None = None) -> LLMResponse:
        """Send the transcript and return one parsed response."""

    @abstractmethod
    async def vision(
        self,
        image_data: str,
        media_type: ImageMediaType,
        prompt: str,
        options: VisionOptions | None = None,
    ) -> str:
        """Single-shot image analysis; returns the model's text."""

    @abstractmethod
    def convert_tools(self, tools: list[Tool] | tuple[Tool, ...]) -> list[dict[str, Any]]:
        """Unified tool definitions -> vendor-native schema."""

    @abstractmethod
    def convert_messages(self, messages: list[Message]) -> tuple[str | None, list[dict[str, Any]]]:
        """Unified messages -> (system prompt, vendor-native messages).

        System-role messages are removed from the list and returned as
        the system prompt.
        """

    @abstractmethod
    def parse_messages(self, native: list[dict[str, Any]]) -> list[Message]:
        """Vendor-native messages -> unified messages."""

    async def close(self) -> None:
        """Close the httpx client if this adapter created it."""
        if self._http is not None and self._owns_http:
            await self._http.aclose()
        self._http = None

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    def _require_configured(self) -> None:
        if not self.is_configured():
            raise ProviderNotConfiguredError(
                f"{self.name} provider is not configured: {self.api_key_env} is not set"
            )

    def _headers(self) -> dict[str, str]:
        return {"content-type": "application/json"}

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(
                timeout=self._timeout,
                limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
            )
            self._owns_http = True
        return self._http

    @staticmethod
    def _system_text(messages: list[Message], override: str | None) -> str | None:
        if override:
            return override
        parts = [m.text() for m in messages if m.role == "system" and m.text()]
        return "\n\n".join(parts) if parts else None

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        """POST a JSON payload and return the decoded body.

        No retries: a failed call fails the turn and the user retries.
        """
        url = f"{self._base_url}{path}"
        try:
            response = await self._client().post(url, json=payload, headers=self._headers())
        except httpx.TimeoutException as e:
            raise ProviderCallError(f"{self.name} API request timed out") from e
        except httpx.HTTPError as e:
            raise ProviderCallError(f"{self.name} API request failed: {e}") from e

        if response.status_code != 200:
            try:
                error_data = response.json()
                error = error_data.get("error", {})
                if isinstance(error, dict):
                    error_type = error.get("type") or error.get("status") or "unknown"
                    error_msg = error.get("message", "unknown error")
                else:
                    error_type, error_msg = "unknown", str(error)
            except ValueError:
                error_type = "http_error"
                error_msg = response.text[:500]
            logger.warning(
                "%s API error %d (%s): %s", self.name, response.status_code, error_type, error_msg
            )
            raise ProviderCallError(
                f"{self.name} API error ({response.status_code}): {error_type} - {error_msg}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise ProviderCallError(f"{self.name} API returned a malformed body") from e
