"""Anthropic Messages API adapter (direct httpx, no SDK)."""

from __future__ import annotations

import logging
from typing import Any

from cyncro.llm.provider import LLMProvider
from cyncro.llm.types import (
    ChatOptions,
    ContentBlock,
    ImageBlock,
    ImageMediaType,
    LLMResponse,
    Message,
    StopReason,
    TextBlock,
    Tool,
    ToolCall,
    ToolResultBlock,
    ToolUseBlock,
    Usage,
    VisionOptions,
)

logger = logging.getLogger(__name__)

_API_VERSION = "2023-06-01"

_STOP_REASONS: dict[str, StopReason] = {
    "end_turn": "end_turn",
    "stop_sequence": "end_turn",
    "tool_use": "tool_use",
    "max_tokens": "max_tokens",
}


class AnthropicProvider(LLMProvider):
    name = "anthropic"
    api_key_env = "ANTHROPIC_API_KEY"
    fallback_model = "claude-sonnet-4-5-20250929"

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        kwargs.setdefault("base_url", "https://api.anthropic.com")
        super().__init__(*args, **kwargs)

    def _headers(self) -> dict[str, str]:
        return {
            "anthropic-version": _API_VERSION,
            "content-type": "application/json",
            "x-api-key": self._api_key,
        }

    # ------------------------------------------------------------------
    # Conversion
    # ------------------------------------------------------------------

    def convert_tools(self, tools: list[Tool] | tuple[Tool, ...]) -> list[dict[str, Any]]:
        return [
            {
                "name": tool.name,
                "description": tool.description,
                "input_schema": tool.parameters.json_schema(),
            }
            for tool in tools
        ]

    def convert_messages(self, messages: list[Message]) -> tuple[str | None, list[dict[str, Any]]]:
        system = self._system_text(messages, None)
        native: list[dict[str, Any]] = []
        for message in messages:
            if message.role == "system":
                continue
            if isinstance(message.content, str):
                native.append({"role": message.role, "content": message.content})
            else:
                native.append({
                    "role": message.role,
                    "content": [_block_to_native(b) for b in message.content],
                })
        return system, native

    def parse_messages(self, native: list[dict[str, Any]]) -> list[Message]:
        messages: list[Message] = []
        for item in native:
            content = item.get("content", "")
            if isinstance(content, str):
                messages.append(Message(role=item["role"], content=content))
                continue
            blocks = tuple(b for b in (_block_from_native(raw) for raw in content) if b is not None)
            messages.append(Message(role=item["role"], content=blocks))
        return messages

    # ------------------------------------------------------------------
    # Calls
    # ------------------------------------------------------------------

    async def chat(self, messages: list[Message], options: ChatOptions | None = None) -> LLMResponse:
        self._require_configured()
        options = options or ChatOptions()

        system, native = self.convert_messages(messages)
        system = options.system_prompt or system

        payload: dict[str, Any] = {
            "model": options.model or self.get_default_model(),
            "max_tokens": options.max_tokens,
            "messages": native,
        }
        if system:
            payload["system"] = system
        if options.tools:
            payload["tools"] = self.convert_tools(options.tools)
        if options.temperature is not None:
            payload["temperature"] = options.temperature

        data = await self._post("/v1/messages", payload)
        return self._parse_response(data)

    async def vision(
        self,
        image_data: str,
        media_type: ImageMediaType,
        prompt: str,
        options: VisionOptions | None = None,
    ) -> str:
        self._require_configured()
        options = options or VisionOptions()
        payload = {
            "model": options.model or self.get_default_model(),
            "max_tokens": options.max_tokens,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        _block_to_native(ImageBlock(media_type=media_type, data=image_data)),
                        {"type": "text", "text": prompt},
                    ],
                }
            ],
        }
        data = await self._post("/v1/messages", payload)
        for block in data.get("content", []):
            if block.get("type") == "text":
                return block.get("text", "")
        return ""

    @staticmethod
    def _parse_response(data: dict[str, Any]) -> LLMResponse:
        text_parts: list[str] = []
        tool_calls: list[ToolCall] = []
        for block in data.get("content", []):
            if block.get("type") == "text":
                text_parts.append(block.get("text", ""))
            elif block.get("type") == "tool_use":
                tool_calls.append(ToolCall(
                    id=block["id"],
                    name=block["name"],
                    input=block.get("input") or {},
                ))

        usage = data.get("usage") or {}
        return LLMResponse(
            content="".join(text_parts),
            tool_calls=tuple(tool_calls),
            stop_reason=_STOP_REASONS.get(data.get("stop_reason") or "", "end_turn"),
            usage=Usage(
                input_tokens=usage.get("input_tokens", 0),
                output_tokens=usage.get("output_tokens", 0),
            ),
        )


def _block_to_native(block: ContentBlock) -> dict[str, Any]:
    if isinstance(block, TextBlock):
        return {"type": "text", "text": block.text}
    if isinstance(block, ImageBlock):
        return {
            "type": "image",
            "source": {"type": "base64", "media_type": block.media_type, "data": block.data},
        }
    if isinstance(block, ToolUseBlock):
        return {"type": "tool_use", "id": block.id, "name": block.name, "input": block.input}
    native: dict[str, Any] = {
        "type": "tool_result",
        "tool_use_id": block.tool_use_id,
        "content": block.content,
    }
    if block.is_error:
        native["is_error"] = True
    return native


def _block_from_native(raw: dict[str, Any]) -> ContentBlock | None:
    block_type = raw.get("type")
    if block_type == "text":
        return TextBlock(text=raw.get("text", ""))
    if block_type == "image":
        source = raw.get("source", {})
        return ImageBlock(media_type=source["media_type"], data=source["data"])
    if block_type == "tool_use":
        return ToolUseBlock(id=raw["id"], name=raw["name"], input=raw.get("input") or {})
    if block_type == "tool_result":
        content = raw.get("content", "")
        if isinstance(content, list):
            content = "".join(c.get("text", "") for c in content if c.get("type") == "text")
        return ToolResultBlock(
            tool_use_id=raw["tool_use_id"],
            content=content,
            is_error=bool(raw.get("is_error", False)),
        )
    logger.debug("Skipping unknown Anthropic content block type: %s", block_type)
    return None
