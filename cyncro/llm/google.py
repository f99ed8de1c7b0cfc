"""Google Gemini adapter.

Message and tool conversion to the Gemini ``contents`` format is in
place, but no vendor backend is wired in: chat() and vision() raise
ProviderNotImplementedError naming the missing dependency, so callers
can tell "not implemented" apart from "the model said nothing".
"""

from __future__ import annotations

import json
from typing import Any

from cyncro.errors import ProviderNotImplementedError
from cyncro.llm.provider import LLMProvider
from cyncro.llm.types import (
    ChatOptions,
    ContentBlock,
    ImageBlock,
    ImageMediaType,
    LLMResponse,
    Message,
    TextBlock,
    Tool,
    ToolResultBlock,
    ToolUseBlock,
    VisionOptions,
)

_MISSING_DEPENDENCY = "google-genai"


class GoogleProvider(LLMProvider):
    name = "google"
    api_key_env = "GOOGLE_AI_API_KEY"
    fallback_model = "gemini-1.5-pro"

    def convert_tools(self, tools: list[Tool] | tuple[Tool, ...]) -> list[dict[str, Any]]:
        if not tools:
            return []
        return [{
            "function_declarations": [
                {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.parameters.json_schema(),
                }
                for tool in tools
            ]
        }]

    def convert_messages(self, messages: list[Message]) -> tuple[str | None, list[dict[str, Any]]]:
        system = self._system_text(messages, None)
        tool_names: dict[str, str] = {}
        contents: list[dict[str, Any]] = []
        for message in messages:
            if message.role == "system":
                continue
            parts = [_block_to_part(b, tool_names) for b in message.blocks()]
            contents.append({
                "role": "model" if message.role == "assistant" else "user",
                "parts": parts,
            })
        return system, contents

    def parse_messages(self, native: list[dict[str, Any]]) -> list[Message]:
        messages: list[Message] = []
        for item in native:
            role = "assistant" if item.get("role") == "model" else "user"
            blocks = tuple(_part_to_block(p) for p in item.get("parts", []))
            messages.append(Message(role=role, content=blocks))
        return messages

    async def chat(self, messages: list[Message], options: ChatOptions | None = None) -> LLMResponse:
        self._require_configured()
        raise ProviderNotImplementedError(self.name, _MISSING_DEPENDENCY)

    async def vision(
        self,
        image_data: str,
        media_type: ImageMediaType,
        prompt: str,
        options: VisionOptions | None = None,
    ) -> str:
        self._require_configured()
        raise ProviderNotImplementedError(self.name, _MISSING_DEPENDENCY)


def _block_to_part(block: ContentBlock, tool_names: dict[str, str]) -> dict[str, Any]:
    if isinstance(block, TextBlock):
        return {"text": block.text}
    if isinstance(block, ImageBlock):
        return {"inline_data": {"mime_type": block.media_type, "data": block.data}}
    if isinstance(block, ToolUseBlock):
        tool_names[block.id] = block.name
        return {"function_call": {"id": block.id, "name": block.name, "args": block.input}}
    # Gemini pairs responses by function name; the id is kept for round-trips.
    return {
        "function_response": {
            "id": block.tool_use_id,
            "name": tool_names.get(block.tool_use_id, ""),
            "response": {"content": block.content, "is_error": block.is_error},
        }
    }


def _part_to_block(part: dict[str, Any]) -> ContentBlock:
    if "inline_data" in part:
        inline = part["inline_data"]
        return ImageBlock(media_type=inline["mime_type"], data=inline["data"])
    if "function_call" in part:
        call = part["function_call"]
        return ToolUseBlock(id=call.get("id") or call["name"], name=call["name"], input=call.get("args") or {})
    if "function_response" in part:
        resp = part["function_response"]
        payload = resp.get("response") or {}
        content = payload.get("content")
        if not isinstance(content, str):
            content = json.dumps(payload)
        return ToolResultBlock(
            tool_use_id=resp.get("id") or resp.get("name", ""),
            content=content,
            is_error=bool(payload.get("is_error", False)),
        )
    return TextBlock(text=part.get("text", ""))
