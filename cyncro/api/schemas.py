"""Request bodies accepted by the HTTP API."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from cyncro.assistant.content import Attachment


class PageContext(BaseModel):
    """Where the user is in the app when they send a message."""

    model_config = ConfigDict(populate_by_name=True)

    page: str = "/"
    item_type: str | None = Field(None, alias="itemType")
    item_id: str | None = Field(None, alias="itemId")
    item_data: dict[str, Any] | None = Field(None, alias="itemData")


class ChatRequest(BaseModel):
    message: str = ""
    conversation_id: str | None = None
    context: PageContext = Field(default_factory=PageContext)
    attachments: list[Attachment] = Field(default_factory=list)

    @model_validator(mode="after")
    def _require_content(self) -> ChatRequest:
        if not self.message.strip() and not self.attachments:
            raise ValueError("Message or attachment is required")
        return self


class CreateConversationRequest(BaseModel):
    title: str | None = None
    context: PageContext = Field(default_factory=PageContext)
