"""Tests for OpenAIProvider against a mocked Chat Completions API."""

import json

import httpx
import pytest

from cyncro.errors import ProviderCallError, ProviderNotConfiguredError
from cyncro.llm.openai import OpenAIProvider
from cyncro.llm.types import (
    ChatOptions,
    ImageBlock,
    Message,
    TextBlock,
    Tool,
    ToolParameters,
    ToolResultBlock,
    ToolUseBlock,
)


def _provider(handler, api_key="sk-test"):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return OpenAIProvider(api_key=api_key, http_client=client)


def _completion(message, finish_reason="stop"):
    return httpx.Response(200, json={
        "id": "chatcmpl-1",
        "choices": [{"index": 0, "message": message, "finish_reason": finish_reason}],
        "usage": {"prompt_tokens": 30, "completion_tokens": 4, "total_tokens": 34},
    })


class TestChat:
    @pytest.mark.asyncio
    async def test_payload_shape(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["authorization"]
            seen["body"] = json.loads(request.content)
            return _completion({"role": "assistant", "content": "Hello!"})

        tool = Tool(name="get_analytics", description="Spending analytics", parameters=ToolParameters())
        response = await _provider(handler).chat(
            [Message(role="user", content="hi")],
            ChatOptions(system_prompt="sys", tools=(tool,), temperature=0.2),
        )

        assert seen["url"] == "https://api.openai.com/v1/chat/completions"
        assert seen["auth"] == "Bearer sk-test"
        body = seen["body"]
        assert body["messages"] == [
            {"role": "system", "content": "sys"},
            {"role": "user", "content": "hi"},
        ]
        assert body["temperature"] == 0.2
        assert body["tools"][0] == {
            "type": "function",
            "function": {
                "name": "get_analytics",
                "description": "Spending analytics",
                "parameters": {"type": "object", "properties": {}},
            },
        }
        assert response.content == "Hello!"
        assert response.usage.input_tokens == 30
        assert response.usage.output_tokens == 4

    @pytest.mark.asyncio
    async def test_tool_calls_parsed(self):
        def handler(request):
            return _completion(
                {
                    "role": "assistant",
                    "content": None,
                    "tool_calls": [{
                        "id": "call_abc",
                        "type": "function",
                        "function": {"name": "list_purchases", "arguments": '{"limit": 5}'},
                    }],
                },
                finish_reason="tool_calls",
            )

        response = await _provider(handler).chat([Message(role="user", content="recent?")])

        assert response.stop_reason == "tool_use"
        assert response.content == ""
        (call,) = response.tool_calls
        assert (call.id, call.name, call.input) == ("call_abc", "list_purchases", {"limit": 5})

    @pytest.mark.asyncio
    async def test_malformed_arguments_become_empty_input(self):
        def handler(request):
            return _completion(
                {"role": "assistant", "tool_calls": [{
                    "id": "call_1", "type": "function", "function": {"name": "list_cases", "arguments": "{oops"},
                }]},
                finish_reason="tool_calls",
            )

        response = await _provider(handler).chat([Message(role="user", content="x")])

        assert response.tool_calls[0].input == {}

    @pytest.mark.asyncio
    async def test_length_maps_to_max_tokens(self):
        response = await _provider(lambda r: _completion({"role": "assistant", "content": "trunc"}, "length")).chat(
            [Message(role="user", content="x")]
        )
        assert response.stop_reason == "max_tokens"

    @pytest.mark.asyncio
    async def test_http_error_raises(self):
        def handler(request):
            return httpx.Response(401, json={"error": {"message": "Incorrect API key", "type": "invalid_request_error"}})

        with pytest.raises(ProviderCallError) as exc_info:
            await _provider(handler).chat([Message(role="user", content="x")])

        assert exc_info.value.status_code == 401
        assert "Incorrect API key" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_not_configured(self):
        with pytest.raises(ProviderNotConfiguredError, match="OPENAI_API_KEY"):
            await _provider(lambda r: _completion({}), api_key="").chat([Message(role="user", content="x")])


class TestConversion:
    def test_image_becomes_data_url(self):
        provider = OpenAIProvider(api_key="k")

        _, native = provider.convert_messages([
            Message(role="user", content=(ImageBlock(media_type="image/png", data="iVBORw0K"), TextBlock(text="?"))),
        ])

        assert native == [{
            "role": "user",
            "content": [
                {"type": "image_url", "image_url": {"url": "data:image/png;base64,iVBORw0K"}},
                {"type": "text", "text": "?"},
            ],
        }]

    def test_tool_results_become_tool_messages(self):
        provider = OpenAIProvider(api_key="k")

        _, native = provider.convert_messages([
            Message(role="assistant", content=(ToolUseBlock(id="call_1", name="list_cases", input={}),)),
            Message(role="user", content=(ToolResultBlock(tool_use_id="call_1", content='{"cases": []}'),)),
        ])

        assert native[0] == {
            "role": "assistant",
            "content": None,
            "tool_calls": [{"id": "call_1", "type": "function", "function": {"name": "list_cases", "arguments": "{}"}}],
        }
        assert native[1] == {"role": "tool", "tool_call_id": "call_1", "content": '{"cases": []}'}

    def test_round_trip_preserves_image_and_tools(self):
        provider = OpenAIProvider(api_key="k")
        messages = [
            Message(role="user", content=(ImageBlock(media_type="image/gif", data="R0lGOD"), TextBlock(text="log it"))),
            Message(role="assistant", content=(
                TextBlock(text="Saving."),
                ToolUseBlock(id="call_9", name="create_purchase", input={"product_name": "Lamp"}),
            )),
            Message(role="user", content=(
                ToolResultBlock(tool_use_id="call_9", content='{"id": "p1"}'),
                TextBlock(text="thanks"),
            )),
        ]

        system, native = provider.convert_messages(messages)

        assert system is None
        assert provider.parse_messages(native) == messages

    def test_failed_tool_result_keeps_error_flag(self):
        provider = OpenAIProvider(api_key="k")
        messages = [
            Message(role="assistant", content=(ToolUseBlock(id="call_2", name="get_purchase", input={"id": "p1"}),)),
            Message(role="user", content=(
                ToolResultBlock(tool_use_id="call_2", content='{"error": "Purchase not found: p1"}', is_error=True),
            )),
        ]

        _, native = provider.convert_messages(messages)

        assert native[1]["content"] == '[tool error] {"error": "Purchase not found: p1"}'
        assert provider.parse_messages(native) == messages
