"""Provider abstraction over vendor chat/vision APIs.

The adapter is chosen once, at the application boundary, and injected
into the orchestrator:

    provider = create_provider(settings)
    response = await provider.chat(messages, ChatOptions(tools=tools))
"""

import httpx

from cyncro.config import ProviderName, Settings
from cyncro.llm.anthropic import AnthropicProvider
from cyncro.llm.google import GoogleProvider
from cyncro.llm.openai import OpenAIProvider
from cyncro.llm.provider import LLMProvider
from cyncro.llm.types import (
    ChatOptions,
    ContentBlock,
    ImageBlock,
    LLMResponse,
    Message,
    TextBlock,
    Tool,
    ToolCall,
    ToolParameters,
    ToolResultBlock,
    ToolUseBlock,
    Usage,
    VisionOptions,
)

PROVIDERS: dict[str, type[LLMProvider]] = {
    "anthropic": AnthropicProvider,
    "openai": OpenAIProvider,
    "google": GoogleProvider,
}


def create_provider(
    settings: Settings,
    provider: ProviderName | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> LLMProvider:
    """Build the adapter for ``provider`` (default: settings.llm_provider)."""
    name = provider or settings.llm_provider
    try:
        cls = PROVIDERS[name]
    except KeyError:
        raise ValueError(f"Unknown LLM provider: {name}") from None

    kwargs = {
        "api_key": settings.api_key_for(name),
        "default_model": settings.llm_model or None,
        "http_client": http_client,
        "timeout": httpx.Timeout(
            connect=settings.api_timeout_connect,
            read=settings.api_timeout_read,
            write=10.0,
            pool=10.0,
        ),
    }
    if name == "anthropic":
        kwargs["base_url"] = settings.anthropic_base_url
    elif name == "openai":
        kwargs["base_url"] = settings.openai_base_url
    return cls(**kwargs)


__all__ = [
    "AnthropicProvider",
    "ChatOptions",
    "ContentBlock",
    "GoogleProvider",
    "ImageBlock",
    "LLMProvider",
    "LLMResponse",
    "Message",
    "OpenAIProvider",
    "PROVIDERS",
    "TextBlock",
    "Tool",
    "ToolCall",
    "ToolParameters",
    "ToolResultBlock",
    "ToolUseBlock",
    "Usage",
    "VisionOptions",
    "create_provider",
]
