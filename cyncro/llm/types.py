"""Vendor-neutral vocabulary shared by every provider adapter.

Messages carry either a plain string or a tuple of tagged content blocks.
All models are frozen: a transcript is extended by building new values,
never by mutating the ones already sent to a provider.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field

Role = Literal["user", "assistant", "system"]
StopReason = Literal["end_turn", "tool_use", "max_tokens"]
ImageMediaType = Literal["image/jpeg", "image/png", "image/gif", "image/webp"]

SUPPORTED_IMAGE_TYPES: frozenset[str] = frozenset(
    {"image/jpeg", "image/png", "image/gif", "image/webp"}
)


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


# ---------------------------------------------------------------------------
# Content blocks
# ---------------------------------------------------------------------------


class TextBlock(_Frozen):
    type: Literal["text"] = "text"
    text: str


class ImageBlock(_Frozen):
    type: Literal["image"] = "image"
    media_type: ImageMediaType
    data: str  # base64, no data: prefix


class ToolUseBlock(_Frozen):
    type: Literal["tool_use"] = "tool_use"
    id: str
    name: str
    input: dict[str, Any] = Field(default_factory=dict)


class ToolResultBlock(_Frozen):
    type: Literal["tool_result"] = "tool_result"
    tool_use_id: str
    content: str
    is_error: bool = False


ContentBlock = Annotated[
    TextBlock | ImageBlock | ToolUseBlock | ToolResultBlock,
    Field(discriminator="type"),
]


class Message(_Frozen):
    """A single message in a conversation."""

    role: Role
    content: str | tuple[ContentBlock, ...]

    def blocks(self) -> tuple[ContentBlock, ...]:
        """Content as blocks; a plain string becomes one text block."""
        if isinstance(self.content, str):
            return (TextBlock(text=self.content),) if self.content else ()
        return self.content

    def text(self) -> str:
        """Concatenated text of all text blocks."""
        if isinstance(self.content, str):
            return self.content
        return "\n".join(b.text for b in self.content if isinstance(b, TextBlock))

    def tool_uses(self) -> list[ToolUseBlock]:
        return [b for b in self.blocks() if isinstance(b, ToolUseBlock)]

    def tool_results(self) -> list[ToolResultBlock]:
        return [b for b in self.blocks() if isinstance(b, ToolResultBlock)]

    def content_json(self) -> str | list[dict[str, Any]]:
        """JSON-ready content for persistence."""
        if isinstance(self.content, str):
            return self.content
        return [b.model_dump(mode="json") for b in self.content]


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


class ToolParameters(_Frozen):
    properties: dict[str, dict[str, Any]] = Field(default_factory=dict)
    required: list[str] = Field(default_factory=list)

    def json_schema(self) -> dict[str, Any]:
        schema: dict[str, Any] = {"type": "object", "properties": self.properties}
        if self.required:
            schema["required"] = list(self.required)
        return schema


class Tool(_Frozen):
    name: str
    description: str
    parameters: ToolParameters = Field(default_factory=ToolParameters)


class ToolCall(_Frozen):
    id: str  # vendor-issued
    name: str
    input: dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Responses and request options
# ---------------------------------------------------------------------------


class Usage(_Frozen):
    input_tokens: int = 0
    output_tokens: int = 0

    def __add__(self, other: Usage) -> Usage:
        return Usage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
        )


class LLMResponse(_Frozen):
    """Parsed, vendor-neutral response from a single chat call."""

    content: str = ""
    tool_calls: tuple[ToolCall, ...] = ()
    stop_reason: StopReason = "end_turn"
    usage: Usage = Field(default_factory=Usage)


@dataclass(frozen=True)
class ChatOptions:
    model: str | None = None
    max_tokens: int = 4096
    temperature: float | None = None
    system_prompt: str | None = None
    tools: tuple[Tool, ...] = ()


@dataclass(frozen=True)
class VisionOptions:
    model: str | None = None
    max_tokens: int = 1024
