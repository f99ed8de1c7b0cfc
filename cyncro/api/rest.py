"""REST API for the Cyncro assistant.

Endpoints:
  POST   /assistant/chat                  - Run one turn, streamed as SSE
  GET    /assistant/conversations         - List the caller's conversations
  POST   /assistant/conversations         - Create an empty conversation
  GET    /assistant/conversations/{id}    - Conversation with its messages
  DELETE /assistant/conversations/{id}    - Delete a conversation
  GET    /health                          - Health check (DB connectivity)
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError
from sqlalchemy import text
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, Response, StreamingResponse
from starlette.routing import Route

from cyncro.api.auth import Authenticator
from cyncro.api.schemas import ChatRequest, CreateConversationRequest
from cyncro.assistant.orchestrator import AssistantOrchestrator
from cyncro.assistant.prompts import generate_conversation_title
from cyncro.assistant.streaming import stream_turn
from cyncro.config import Settings
from cyncro.errors import RequestValidationError
from cyncro.storage.conversations import ConversationMeta, ConversationStore
from cyncro.storage.database import Database

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "X-Accel-Buffering": "no",
}


def _validation_message(error: ValidationError) -> str:
    first = error.errors()[0]
    message = first["msg"].removeprefix("Value error, ")
    location = ".".join(str(p) for p in first["loc"])
    return f"{location}: {message}" if location else message


def create_app(
    orchestrator: AssistantOrchestrator,
    store: ConversationStore,
    authenticator: Authenticator,
    settings: Settings,
    database: Database | None = None,
    lifespan: Any | None = None,
) -> Starlette:
    """Create the Starlette ASGI app with all routes."""

    async def _parse(request: Request, model: type[ModelT]) -> ModelT:
        try:
            body = await request.json()
        except ValueError as e:
            raise RequestValidationError("Invalid JSON body") from e
        try:
            return model.model_validate(body)
        except ValidationError as e:
            raise RequestValidationError(_validation_message(e)) from e

    def _bad_request(error: RequestValidationError) -> JSONResponse:
        return JSONResponse({"error": str(error)}, status_code=400)

    async def _user(request: Request) -> str | None:
        return await authenticator.authenticate(request)

    def _unauthorized() -> JSONResponse:
        return JSONResponse({"error": "Unauthorized"}, status_code=401)

    async def chat(request: Request) -> Response:
        """POST /assistant/chat - SSE streaming turn."""
        user_id = await _user(request)
        if user_id is None:
            return _unauthorized()

        try:
            chat_request = await _parse(request, ChatRequest)
        except RequestValidationError as e:
            return _bad_request(e)

        async def event_generator() -> AsyncIterator[str]:
            async for event in stream_turn(
                lambda channel: orchestrator.run_turn(user_id, chat_request, channel),
                timeout=settings.turn_timeout,
                queue_size=settings.stream_queue_size,
            ):
                yield event.to_sse()

        return StreamingResponse(event_generator(), media_type="text/event-stream", headers=SSE_HEADERS)

    async def list_conversations(request: Request) -> JSONResponse:
        """GET /assistant/conversations - Most recent first."""
        user_id = await _user(request)
        if user_id is None:
            return _unauthorized()
        try:
            conversations = await store.list_conversations(user_id, limit=50)
        except Exception as e:
            logger.error("List conversations error: %s", e)
            return JSONResponse({"error": "Failed to list conversations"}, status_code=500)
        return JSONResponse({"conversations": [c.model_dump(mode="json") for c in conversations]})

    async def create_conversation(request: Request) -> JSONResponse:
        """POST /assistant/conversations - Create an empty conversation."""
        user_id = await _user(request)
        if user_id is None:
            return _unauthorized()
        try:
            body = await _parse(request, CreateConversationRequest)
        except RequestValidationError as e:
            return _bad_request(e)
        try:
            conversation_id = await store.create_conversation(ConversationMeta(
                user_id=user_id,
                title=generate_conversation_title(body.title) if body.title else None,
                started_page=body.context.page,
                context_type=body.context.item_type or "global",
                context_id=body.context.item_id,
            ))
            detail = await store.get_conversation(user_id, conversation_id)
        except Exception as e:
            logger.error("Create conversation error: %s", e)
            return JSONResponse({"error": "Failed to create conversation"}, status_code=500)
        return JSONResponse(detail.conversation.model_dump(mode="json"), status_code=201)

    async def get_conversation(request: Request) -> JSONResponse:
        """GET /assistant/conversations/{id} - Conversation with messages."""
        user_id = await _user(request)
        if user_id is None:
            return _unauthorized()
        try:
            detail = await store.get_conversation(user_id, request.path_params["id"])
        except Exception as e:
            logger.error("Get conversation error: %s", e)
            return JSONResponse({"error": "Failed to load conversation"}, status_code=500)
        if detail is None:
            return JSONResponse({"error": "Conversation not found"}, status_code=404)
        return JSONResponse(detail.model_dump(mode="json"))

    async def delete_conversation(request: Request) -> JSONResponse:
        """DELETE /assistant/conversations/{id} - Messages go with it."""
        user_id = await _user(request)
        if user_id is None:
            return _unauthorized()
        try:
            deleted = await store.delete_conversation(user_id, request.path_params["id"])
        except Exception as e:
            logger.error("Delete conversation error: %s", e)
            return JSONResponse({"error": "Failed to delete conversation"}, status_code=500)
        if not deleted:
            return JSONResponse({"error": "Conversation not found"}, status_code=404)
        return JSONResponse({"success": True})

    async def health(request: Request) -> JSONResponse:
        """GET /health - Health check."""
        if database is None:
            return JSONResponse({"status": "healthy", "database": "memory"})
        try:
            async with database.session() as session:
                await session.execute(text("SELECT 1"))
            return JSONResponse({"status": "healthy", "database": "connected"})
        except Exception as e:
            return JSONResponse({"status": "unhealthy", "error": str(e)}, status_code=503)

    routes = [
        Route("/assistant/chat", chat, methods=["POST"]),
        Route("/assistant/conversations", list_conversations, methods=["GET"]),
        Route("/assistant/conversations", create_conversation, methods=["POST"]),
        Route("/assistant/conversations/{id}", get_conversation, methods=["GET"]),
        Route("/assistant/conversations/{id}", delete_conversation, methods=["DELETE"]),
        Route("/health", health),
    ]

    kwargs: dict[str, Any] = {"routes": routes}
    if lifespan is not None:
        kwargs["lifespan"] = lifespan
    return Starlette(**kwargs)
