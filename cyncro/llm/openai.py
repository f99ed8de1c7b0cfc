"""OpenAI Chat Completions adapter (direct httpx, no SDK).

Differences from the Anthropic wire format handled here:
- the system prompt travels as a leading "system" message
- images are data: URLs inside image_url parts
- tool calls live on the assistant message as function calls with
  JSON-string arguments
- each tool result is its own "tool" role message
- tool messages have no error flag; a failed result is marked by
  prefixing its content with "[tool error] "
"""

from __future__ import annotations

import json
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

_FINISH_REASONS: dict[str, StopReason] = {
    "stop": "end_turn",
    "content_filter": "end_turn",
    "tool_calls": "tool_use",
    "function_call": "tool_use",
    "length": "max_tokens",
}

_TOOL_ERROR_PREFIX = "[tool error] "


class OpenAIProvider(LLMProvider):
    name = "openai"
    api_key_env = "OPENAI_API_KEY"
    fallback_model = "gpt-4o"

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        kwargs.setdefault("base_url", "https://api.openai.com/v1")
        super().__init__(*args, **kwargs)

    def _headers(self) -> dict[str, str]:
        return {
            "content-type": "application/json",
            "authorization": f"Bearer {self._api_key}",
        }

    # ------------------------------------------------------------------
    # Conversion
    # ------------------------------------------------------------------

    def convert_tools(self, tools: list[Tool] | tuple[Tool, ...]) -> list[dict[str, Any]]:
        return [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.parameters.json_schema(),
                },
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
            elif message.role == "assistant":
                native.append(_assistant_to_native(message.content))
            else:
                native.extend(_user_to_native(message.content))
        return system, native

    def parse_messages(self, native: list[dict[str, Any]]) -> list[Message]:
        messages: list[Message] = []
        pending_results: list[ContentBlock] = []

        def flush_results() -> None:
            if pending_results:
                messages.append(Message(role="user", content=tuple(pending_results)))
                pending_results.clear()

        for item in native:
            role = item.get("role")
            if role == "tool":
                pending_results.append(_tool_result_from_native(item))
                continue

            content = item.get("content")
            if role == "user" and pending_results:
                # Tool results and the follow-up user parts form one message.
                blocks = list(pending_results) + list(_parts_from_native(content))
                pending_results.clear()
                messages.append(Message(role="user", content=tuple(blocks)))
                continue
            flush_results()

            if role == "system":
                messages.append(Message(role="system", content=content or ""))
            elif role == "assistant" and item.get("tool_calls"):
                blocks = list(_parts_from_native(content))
                for call in item["tool_calls"]:
                    blocks.append(ToolUseBlock(
                        id=call["id"],
                        name=call["function"]["name"],
                        input=_parse_arguments(call["function"].get("arguments")),
                    ))
                messages.append(Message(role="assistant", content=tuple(blocks)))
            elif isinstance(content, str) or content is None:
                messages.append(Message(role=role, content=content or ""))
            else:
                messages.append(Message(role=role, content=tuple(_parts_from_native(content))))

        flush_results()
        return messages

    # ------------------------------------------------------------------
    # Calls
    # ------------------------------------------------------------------

    async def chat(self, messages: list[Message], options: ChatOptions | None = None) -> LLMResponse:
        self._require_configured()
        options = options or ChatOptions()

        system, native = self.convert_messages(messages)
        system = options.system_prompt or system
        if system:
            native.insert(0, {"role": "system", "content": system})

        payload: dict[str, Any] = {
            "model": options.model or self.get_default_model(),
            "max_tokens": options.max_tokens,
            "messages": native,
        }
        if options.tools:
            payload["tools"] = self.convert_tools(options.tools)
        if options.temperature is not None:
            payload["temperature"] = options.temperature

        data = await self._post("/chat/completions", payload)
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
                        _image_part(ImageBlock(media_type=media_type, data=image_data)),
                        {"type": "text", "text": prompt},
                    ],
                }
            ],
        }
        data = await self._post("/chat/completions", payload)
        choices = data.get("choices") or [{}]
        return (choices[0].get("message") or {}).get("content") or ""

    @staticmethod
    def _parse_response(data: dict[str, Any]) -> LLMResponse:
        choices = data.get("choices") or []
        if not choices:
            return LLMResponse()
        choice = choices[0]
        message = choice.get("message") or {}

        tool_calls = tuple(
            ToolCall(
                id=call["id"],
                name=call["function"]["name"],
                input=_parse_arguments(call["function"].get("arguments")),
            )
            for call in message.get("tool_calls") or []
        )
        usage = data.get("usage") or {}
        return LLMResponse(
            content=message.get("content") or "",
            tool_calls=tool_calls,
            stop_reason=_FINISH_REASONS.get(choice.get("finish_reason") or "", "end_turn"),
            usage=Usage(
                input_tokens=usage.get("prompt_tokens", 0),
                output_tokens=usage.get("completion_tokens", 0),
            ),
        )


def _parse_arguments(arguments: str | dict[str, Any] | None) -> dict[str, Any]:
    if not arguments:
        return {}
    if isinstance(arguments, dict):
        return arguments
    try:
        parsed = json.loads(arguments)
    except json.JSONDecodeError:
        logger.warning("Malformed tool call arguments from OpenAI: %.200s", arguments)
        return {}
    return parsed if isinstance(parsed, dict) else {}


def _image_part(block: ImageBlock) -> dict[str, Any]:
    return {
        "type": "image_url",
        "image_url": {"url": f"data:{block.media_type};base64,{block.data}"},
    }


def _assistant_to_native(blocks: tuple[ContentBlock, ...]) -> dict[str, Any]:
    text = "".join(b.text for b in blocks if isinstance(b, TextBlock))
    native: dict[str, Any] = {"role": "assistant", "content": text or None}
    tool_calls = [
        {
            "id": b.id,
            "type": "function",
            "function": {"name": b.name, "arguments": json.dumps(b.input)},
        }
        for b in blocks
        if isinstance(b, ToolUseBlock)
    ]
    if tool_calls:
        native["tool_calls"] = tool_calls
    return native


def _user_to_native(blocks: tuple[ContentBlock, ...]) -> list[dict[str, Any]]:
    out: list[dict[str, Any]] = [
        {
            "role": "tool",
            "tool_call_id": b.tool_use_id,
            "content": _TOOL_ERROR_PREFIX + b.content if b.is_error else b.content,
        }
        for b in blocks
        if isinstance(b, ToolResultBlock)
    ]
    parts: list[dict[str, Any]] = []
    for b in blocks:
        if isinstance(b, TextBlock):
            parts.append({"type": "text", "text": b.text})
        elif isinstance(b, ImageBlock):
            parts.append(_image_part(b))
    if parts:
        out.append({"role": "user", "content": parts})
    return out


def _tool_result_from_native(item: dict[str, Any]) -> ToolResultBlock:
    content = item.get("content") or ""
    is_error = content.startswith(_TOOL_ERROR_PREFIX)
    if is_error:
        content = content[len(_TOOL_ERROR_PREFIX):]
    return ToolResultBlock(tool_use_id=item["tool_call_id"], content=content, is_error=is_error)


def _parts_from_native(content: str | list[dict[str, Any]] | None) -> list[ContentBlock]:
    if not content:
        return []
    if isinstance(content, str):
        return [TextBlock(text=content)]
    blocks: list[ContentBlock] = []
    for part in content:
        if part.get("type") == "text":
            blocks.append(TextBlock(text=part.get("text", "")))
        elif part.get("type") == "image_url":
            url = part["image_url"]["url"]
            header, _, data = url.partition(",")
            media_type = header.removeprefix("data:").split(";")[0]
            blocks.append(ImageBlock(media_type=media_type, data=data))
    return blocks
