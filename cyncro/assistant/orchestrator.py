"""Bounded agentic loop for one user turn.

    AwaitingModel -> (ExecutingTools -> AwaitingModel)* -> Completed | Failed

Each turn resolves the conversation, builds the user's content, then
calls the model at most ``max_iterations`` times. Tool calls from one
response run sequentially, in vendor order, and every call yields exactly
one tool_use/tool_result pair in the transcript. Progress is reported as
StreamEvents; the turn always ends with one done or error event.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from cyncro.api.schemas import ChatRequest
from cyncro.assistant.attachments import AttachmentPreprocessor
from cyncro.assistant.content import Transcript
from cyncro.assistant.prompts import build_system_prompt, generate_conversation_title
from cyncro.assistant.streaming import GENERIC_ERROR, EventChannel, StreamEvent
from cyncro.assistant.tools import ToolCallRecord, ToolContext, ToolDispatcher
from cyncro.config import Settings
from cyncro.errors import AssistantError
from cyncro.llm.provider import LLMProvider
from cyncro.llm.types import (
    ChatOptions,
    ContentBlock,
    LLMResponse,
    Message,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
    Usage,
)
from cyncro.storage.conversations import ConversationMeta, ConversationStore, NewMessage

logger = logging.getLogger(__name__)

FALLBACK_NO_RESPONSE = (
    "I'm sorry, I couldn't come up with a response to that. Could you try rephrasing your request?"
)
FALLBACK_ACTIONS_COMPLETED = "I've completed the requested actions."
FALLBACK_BUDGET_EXHAUSTED = (
    "I've completed several actions but reached the step limit for a single reply. "
    "Let me know if you'd like me to continue."
)


class ConversationNotFoundError(AssistantError):
    def __init__(self) -> None:
        super().__init__("Conversation not found")


@dataclass
class TurnResult:
    """What a turn produced, whether it completed or failed."""

    conversation_id: str | None = None
    texts: list[str] = field(default_factory=list)
    records: list[ToolCallRecord] = field(default_factory=list)
    model_calls: int = 0
    usage: Usage = field(default_factory=Usage)
    budget_exhausted: bool = False
    final_text: str = ""


def final_text_for(result: TurnResult) -> str:
    """Accumulated text, or a fallback that never conflates silence with inaction."""
    text = "\n\n".join(t for t in result.texts if t.strip())
    if text:
        return text
    if not result.records:
        return FALLBACK_NO_RESPONSE
    if result.budget_exhausted:
        return FALLBACK_BUDGET_EXHAUSTED
    return FALLBACK_ACTIONS_COMPLETED


class AssistantOrchestrator:
    def __init__(
        self,
        provider: LLMProvider,
        store: ConversationStore,
        preprocessor: AttachmentPreprocessor,
        dispatcher: ToolDispatcher,
        settings: Settings,
    ) -> None:
        self._provider = provider
        self._store = store
        self._preprocessor = preprocessor
        self._dispatcher = dispatcher
        self._settings = settings

    async def run_turn(self, user_id: str, request: ChatRequest, channel: EventChannel) -> TurnResult:
        """Run one turn, reporting progress into ``channel``.

        Never raises for turn-level failures: they end the turn with an
        error event instead.
        """
        result = TurnResult()
        try:
            conversation_id, is_new = await self._resolve_conversation(user_id, request)
        except Exception as e:
            await channel.send(StreamEvent.error(self._error_message(e, "resolving conversation")))
            return result

        result.conversation_id = conversation_id
        await channel.send(StreamEvent.conversation(conversation_id, is_new))
        logger.info("Turn start: conversation=%s new=%s", conversation_id, is_new)

        try:
            await self._run(user_id, conversation_id, request, channel, result)
        except asyncio.CancelledError:
            logger.warning("Turn cancelled: conversation=%s tools_run=%d", conversation_id, len(result.records))
            await asyncio.shield(self._persist_partial(user_id, conversation_id, result))
            raise
        except Exception as e:
            message = self._error_message(e, f"in conversation {conversation_id}")
            await self._persist_partial(user_id, conversation_id, result)
            await channel.send(StreamEvent.error(message))
            return result

        await channel.send(StreamEvent.done(conversation_id))
        logger.info(
            "Turn done: conversation=%s calls=%d tools=%d tokens_in=%d tokens_out=%d",
            conversation_id,
            result.model_calls,
            len(result.records),
            result.usage.input_tokens,
            result.usage.output_tokens,
        )
        return result

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _resolve_conversation(self, user_id: str, request: ChatRequest) -> tuple[str, bool]:
        if request.conversation_id:
            if not await self._store.touch_conversation(user_id, request.conversation_id):
                raise ConversationNotFoundError()
            return request.conversation_id, False

        context = request.context
        conversation_id = await self._store.create_conversation(ConversationMeta(
            user_id=user_id,
            title=generate_conversation_title(request.message),
            started_page=context.page,
            context_type=context.item_type or "global",
            context_id=context.item_id,
        ))
        return conversation_id, True

    async def _run(
        self,
        user_id: str,
        conversation_id: str,
        request: ChatRequest,
        channel: EventChannel,
        result: TurnResult,
    ) -> None:
        history = await self._store.load_recent_history(conversation_id, self._settings.history_limit)
        built = await self._preprocessor.build_message_content(user_id, request.message, request.attachments)
        user_message = Message(role="user", content=built.content)
        await self._store.append_messages(
            conversation_id, user_id, [NewMessage(role="user", content=user_message.content_json())]
        )

        transcript = Transcript.from_history(history, user_message)
        options = ChatOptions(
            model=self._settings.llm_model or None,
            max_tokens=self._settings.max_tokens,
            temperature=self._settings.temperature,
            system_prompt=build_system_prompt(request.context),
            tools=tuple(self._dispatcher.tools()),
        )
        tool_context = ToolContext(user_id=user_id, uploaded_files=tuple(built.uploaded_files))

        await self._loop(transcript, options, tool_context, channel, result)

        result.final_text = final_text_for(result)
        if not result.texts or not any(t.strip() for t in result.texts):
            await channel.send(StreamEvent.content(result.final_text))

        await self._store.append_messages(conversation_id, user_id, [self._assistant_message(result)])

    async def _loop(
        self,
        transcript: Transcript,
        options: ChatOptions,
        tool_context: ToolContext,
        channel: EventChannel,
        result: TurnResult,
    ) -> None:
        max_iterations = self._settings.max_iterations
        while True:
            if channel.closed:
                logger.info("Client gone; no further model calls after %d", result.model_calls)
                return
            if result.model_calls >= max_iterations:
                result.budget_exhausted = True
                logger.warning("Tool loop reached max_iterations=%d", max_iterations)
                return

            response = await self._provider.chat(list(transcript), options)
            result.model_calls += 1
            result.usage = result.usage + response.usage

            if response.content:
                result.texts.append(response.content)
                await channel.send(StreamEvent.content(response.content))

            if response.stop_reason != "tool_use" or not response.tool_calls:
                return

            transcript = transcript.append(*await self._execute_tools(response, tool_context, channel, result))

    async def _execute_tools(
        self,
        response: LLMResponse,
        tool_context: ToolContext,
        channel: EventChannel,
        result: TurnResult,
    ) -> tuple[Message, Message]:
        """Run every requested tool in order; return the assistant/results message pair."""
        assistant_blocks: list[ContentBlock] = []
        if response.content:
            assistant_blocks.append(TextBlock(text=response.content))
        result_blocks: list[ContentBlock] = []

        for call in response.tool_calls:
            assistant_blocks.append(ToolUseBlock(id=call.id, name=call.name, input=call.input))
            await channel.send(StreamEvent.tool_call(call.name))
            record = await self._dispatcher.dispatch(call, tool_context)
            result.records.append(record)
            await channel.send(StreamEvent.tool_result(record.tool_name, record.success, record.output))
            result_blocks.append(ToolResultBlock(
                tool_use_id=call.id,
                content=record.result_content(),
                is_error=not record.success,
            ))

        return (
            Message(role="assistant", content=tuple(assistant_blocks)),
            Message(role="user", content=tuple(result_blocks)),
        )

    # ------------------------------------------------------------------
    # Persistence and errors
    # ------------------------------------------------------------------

    @staticmethod
    def _assistant_message(result: TurnResult) -> NewMessage:
        return NewMessage(
            role="assistant",
            content=result.final_text or final_text_for(result),
            tool_calls=[r.model_dump(mode="json") for r in result.records] or None,
        )

    async def _persist_partial(self, user_id: str, conversation_id: str, result: TurnResult) -> None:
        """Keep the audit trail of tools that already ran when a turn fails."""
        if not result.records:
            return
        try:
            await self._store.append_messages(conversation_id, user_id, [self._assistant_message(result)])
        except Exception:
            logger.exception("Failed to persist partial turn for conversation %s", conversation_id)

    @staticmethod
    def _error_message(error: Exception, where: str) -> str:
        if isinstance(error, AssistantError):
            logger.warning("Turn failed %s: %s", where, error)
            return str(error)
        logger.exception("Unexpected error %s", where)
        return GENERIC_ERROR
