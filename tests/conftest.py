"""Shared fixtures: scripted provider, fake collaborators, wired orchestrator."""

import copy
from collections.abc import Callable
from datetime import date
from typing import Any

import pytest

from cyncro.assistant.attachments import AttachmentPreprocessor
from cyncro.assistant.catalog import register_catalog_tools
from cyncro.assistant.orchestrator import AssistantOrchestrator
from cyncro.assistant.streaming import EventChannel, StreamEvent
from cyncro.assistant.tools import ToolDispatcher
from cyncro.config import Settings
from cyncro.errors import StorageError
from cyncro.llm.provider import LLMProvider
from cyncro.llm.types import ChatOptions, LLMResponse, Message, Tool, ToolCall, Usage
from cyncro.storage.conversations import InMemoryConversationStore
from cyncro.storage.records import InMemoryRecordStore

TODAY = date(2025, 6, 15)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def make_response(
    text: str = "",
    tool_calls: list[tuple[str, dict[str, Any]]] | None = None,
    stop_reason: str | None = None,
) -> LLMResponse:
    """Build an LLMResponse; tool_calls are (name, input) pairs."""
    calls = tuple(
        ToolCall(id=f"toolu_{i}_{name}", name=name, input=args)
        for i, (name, args) in enumerate(tool_calls or [])
    )
    return LLMResponse(
        content=text,
        tool_calls=calls,
        stop_reason=stop_reason or ("tool_use" if calls else "end_turn"),
        usage=Usage(input_tokens=10, output_tokens=5),
    )


class ScriptedProvider(LLMProvider):
    """Plays back a script of responses (or exceptions) and records every call.

    Once the script runs out, ``repeat`` (if set) is returned forever.
    """

    name = "scripted"
    api_key_env = "SCRIPTED_API_KEY"
    fallback_model = "scripted-model"

    def __init__(
        self,
        script: list[LLMResponse | Exception] | None = None,
        repeat: LLMResponse | Callable[[int], LLMResponse] | None = None,
    ) -> None:
        super().__init__(api_key="test-key")
        self.script = list(script or [])
        self.repeat = repeat
        self.calls: list[tuple[list[Message], ChatOptions | None]] = []

    async def chat(self, messages, options=None):
        self.calls.append((copy.deepcopy(list(messages)), options))
        if self.script:
            item = self.script.pop(0)
            if isinstance(item, Exception):
                raise item
            return item
        if callable(self.repeat):
            return self.repeat(len(self.calls))
        if self.repeat is not None:
            return self.repeat
        raise AssertionError("ScriptedProvider script exhausted")

    async def vision(self, image_data, media_type, prompt, options=None):
        return ""

    def convert_tools(self, tools: list[Tool] | tuple[Tool, ...]) -> list[dict[str, Any]]:
        return [t.model_dump() for t in tools]

    def convert_messages(self, messages):
        return None, [m.model_dump() for m in messages]

    def parse_messages(self, native):
        return [Message.model_validate(m) for m in native]


class FakeBlobStore:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.uploads: dict[str, tuple[bytes, str]] = {}

    async def upload(self, path: str, data: bytes, content_type: str) -> None:
        if self.fail:
            raise StorageError("bucket unavailable")
        self.uploads[path] = (data, content_type)


class FakePdfExtractor:
    def __init__(self, text: str = "", error: Exception | None = None) -> None:
        self.text = text
        self.error = error

    async def extract(self, data: bytes) -> str:
        if self.error is not None:
            raise self.error
        return self.text


async def collect(channel: EventChannel) -> list[StreamEvent]:
    """Drain a channel until its terminal event."""
    events = []
    while True:
        event = await channel.receive()
        events.append(event)
        if event.is_terminal:
            return events


def event_types(events: list[StreamEvent]) -> list[str]:
    return [e.type for e in events]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        llm_provider="anthropic",
        anthropic_api_key="test-key",
        openai_api_key="",
        google_api_key="",
        database_url="",
        local_storage_dir=str(tmp_path / "uploads"),
        max_iterations=5,
        history_limit=20,
        turn_timeout=5.0,
    )


@pytest.fixture
def store() -> InMemoryConversationStore:
    return InMemoryConversationStore()


@pytest.fixture
def records() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def blobs() -> FakeBlobStore:
    return FakeBlobStore()


@pytest.fixture
def pdf_extractor() -> FakePdfExtractor:
    return FakePdfExtractor()


@pytest.fixture
def dispatcher(records) -> ToolDispatcher:
    d = ToolDispatcher()
    register_catalog_tools(d, records, today=lambda: TODAY)
    return d


@pytest.fixture
def preprocessor(blobs, pdf_extractor, settings) -> AttachmentPreprocessor:
    return AttachmentPreprocessor(blobs, pdf_extractor, settings)


@pytest.fixture
def provider() -> ScriptedProvider:
    return ScriptedProvider()


@pytest.fixture
def orchestrator(provider, store, preprocessor, dispatcher, settings) -> AssistantOrchestrator:
    return AssistantOrchestrator(
        provider=provider,
        store=store,
        preprocessor=preprocessor,
        dispatcher=dispatcher,
        settings=settings,
    )
