"""Conversation and message persistence.

The orchestrator only creates conversations, touches last_message_at and
appends messages. Messages are never updated; the log is a durable audit
trail independent of the in-memory transcript.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol

from pydantic import BaseModel, ValidationError
from sqlalchemy import delete, select, update

from cyncro.llm.types import Message, Role
from cyncro.storage.database import Database
from cyncro.storage.models import AssistantConversation, AssistantMessage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConversationMeta:
    user_id: str
    title: str | None = None
    started_page: str | None = None
    context_type: str = "global"
    context_id: str | None = None


@dataclass(frozen=True)
class NewMessage:
    role: Role
    content: str | list[dict[str, Any]]
    tool_calls: list[dict[str, Any]] | None = None


class ConversationRecord(BaseModel):
    id: str
    user_id: str
    title: str | None = None
    started_page: str | None = None
    context_type: str = "global"
    context_id: str | None = None
    created_at: datetime
    last_message_at: datetime


class MessageRecord(BaseModel):
    id: int | str
    role: str
    content: Any
    tool_calls: list[dict[str, Any]] | None = None
    created_at: datetime


class ConversationDetail(BaseModel):
    conversation: ConversationRecord
    messages: list[MessageRecord]


class ConversationStore(Protocol):
    async def create_conversation(self, meta: ConversationMeta) -> str: ...

    async def touch_conversation(self, user_id: str, conversation_id: str) -> bool: ...

    async def append_messages(self, conversation_id: str, user_id: str, messages: list[NewMessage]) -> None: ...

    async def load_recent_history(self, conversation_id: str, limit: int) -> list[Message]: ...

    async def list_conversations(self, user_id: str, limit: int = 50) -> list[ConversationRecord]: ...

    async def get_conversation(self, user_id: str, conversation_id: str) -> ConversationDetail | None: ...

    async def delete_conversation(self, user_id: str, conversation_id: str) -> bool: ...


def to_message(role: str, content: Any) -> Message | None:
    """Rebuild a Message from a stored row; None for rows that cannot be sent."""
    if role not in ("user", "assistant") or content in (None, "", []):
        return None
    try:
        return Message.model_validate({"role": role, "content": content})
    except ValidationError:
        logger.warning("Skipping unreadable %s message in history", role)
        return None


def _now() -> datetime:
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# SQL implementation
# ---------------------------------------------------------------------------


def _conversation_record(row: AssistantConversation) -> ConversationRecord:
    return ConversationRecord.model_validate(row, from_attributes=True)


class SqlConversationStore:
    def __init__(self, database: Database) -> None:
        self._db = database

    async def create_conversation(self, meta: ConversationMeta) -> str:
        async with self._db.session() as session:
            row = AssistantConversation(
                user_id=meta.user_id,
                title=meta.title,
                started_page=meta.started_page,
                context_type=meta.context_type,
                context_id=meta.context_id,
            )
            session.add(row)
            await session.commit()
            return row.id

    async def touch_conversation(self, user_id: str, conversation_id: str) -> bool:
        async with self._db.session() as session:
            result = await session.execute(
                update(AssistantConversation)
                .where(AssistantConversation.id == conversation_id, AssistantConversation.user_id == user_id)
                .values(last_message_at=_now())
            )
            await session.commit()
            return result.rowcount > 0

    async def append_messages(self, conversation_id: str, user_id: str, messages: list[NewMessage]) -> None:
        async with self._db.session() as session:
            session.add_all([
                AssistantMessage(
                    conversation_id=conversation_id,
                    user_id=user_id,
                    role=m.role,
                    content=m.content,
                    tool_calls=m.tool_calls,
                )
                for m in messages
            ])
            await session.commit()

    async def load_recent_history(self, conversation_id: str, limit: int) -> list[Message]:
        if limit <= 0:
            return []
        async with self._db.session() as session:
            result = await session.execute(
                select(AssistantMessage.role, AssistantMessage.content)
                .where(AssistantMessage.conversation_id == conversation_id)
                .order_by(AssistantMessage.id.desc())
                .limit(limit)
            )
            rows = list(result.all())
        rows.reverse()
        return [m for m in (to_message(role, content) for role, content in rows) if m is not None]

    async def list_conversations(self, user_id: str, limit: int = 50) -> list[ConversationRecord]:
        async with self._db.session() as session:
            result = await session.execute(
                select(AssistantConversation)
                .where(AssistantConversation.user_id == user_id)
                .order_by(AssistantConversation.last_message_at.desc())
                .limit(limit)
            )
            return [_conversation_record(row) for row in result.scalars()]

    async def get_conversation(self, user_id: str, conversation_id: str) -> ConversationDetail | None:
        async with self._db.session() as session:
            conversation = await session.scalar(
                select(AssistantConversation).where(
                    AssistantConversation.id == conversation_id,
                    AssistantConversation.user_id == user_id,
                )
            )
            if conversation is None:
                return None
            result = await session.execute(
                select(AssistantMessage)
                .where(AssistantMessage.conversation_id == conversation_id)
                .order_by(AssistantMessage.id)
            )
            messages = [MessageRecord.model_validate(m, from_attributes=True) for m in result.scalars()]
            return ConversationDetail(conversation=_conversation_record(conversation), messages=messages)

    async def delete_conversation(self, user_id: str, conversation_id: str) -> bool:
        async with self._db.session() as session:
            owned = await session.scalar(
                select(AssistantConversation.id).where(
                    AssistantConversation.id == conversation_id,
                    AssistantConversation.user_id == user_id,
                )
            )
            if owned is None:
                return False
            # Explicit so SQLite without foreign_keys pragma behaves like Postgres.
            await session.execute(delete(AssistantMessage).where(AssistantMessage.conversation_id == conversation_id))
            await session.execute(delete(AssistantConversation).where(AssistantConversation.id == conversation_id))
            await session.commit()
            return True


# ---------------------------------------------------------------------------
# In-memory implementation
# ---------------------------------------------------------------------------


@dataclass
class _MemoryConversation:
    record: ConversationRecord
    messages: list[MessageRecord] = field(default_factory=list)


class InMemoryConversationStore:
    """Process-local store for development and tests."""

    def __init__(self) -> None:
        self._conversations: dict[str, _MemoryConversation] = {}
        self._next_message_id = 1

    async def create_conversation(self, meta: ConversationMeta) -> str:
        now = _now()
        conversation_id = str(uuid.uuid4())
        self._conversations[conversation_id] = _MemoryConversation(
            record=ConversationRecord(
                id=conversation_id,
                user_id=meta.user_id,
                title=meta.title,
                started_page=meta.started_page,
                context_type=meta.context_type,
                context_id=meta.context_id,
                created_at=now,
                last_message_at=now,
            )
        )
        return conversation_id

    async def touch_conversation(self, user_id: str, conversation_id: str) -> bool:
        conversation = self._conversations.get(conversation_id)
        if conversation is None or conversation.record.user_id != user_id:
            return False
        conversation.record = conversation.record.model_copy(update={"last_message_at": _now()})
        return True

    async def append_messages(self, conversation_id: str, user_id: str, messages: list[NewMessage]) -> None:
        conversation = self._conversations[conversation_id]
        for m in messages:
            conversation.messages.append(MessageRecord(
                id=self._next_message_id,
                role=m.role,
                content=m.content,
                tool_calls=m.tool_calls,
                created_at=_now(),
            ))
            self._next_message_id += 1

    async def load_recent_history(self, conversation_id: str, limit: int) -> list[Message]:
        conversation = self._conversations.get(conversation_id)
        if conversation is None or limit <= 0:
            return []
        recent = conversation.messages[-limit:]
        return [m for m in (to_message(r.role, r.content) for r in recent) if m is not None]

    async def list_conversations(self, user_id: str, limit: int = 50) -> list[ConversationRecord]:
        records = [c.record for c in self._conversations.values() if c.record.user_id == user_id]
        records.sort(key=lambda r: r.last_message_at, reverse=True)
        return records[:limit]

    async def get_conversation(self, user_id: str, conversation_id: str) -> ConversationDetail | None:
        conversation = self._conversations.get(conversation_id)
        if conversation is None or conversation.record.user_id != user_id:
            return None
        return ConversationDetail(conversation=conversation.record, messages=list(conversation.messages))

    async def delete_conversation(self, user_id: str, conversation_id: str) -> bool:
        conversation = self._conversations.get(conversation_id)
        if conversation is None or conversation.record.user_id != user_id:
            return False
        del self._conversations[conversation_id]
        return True
