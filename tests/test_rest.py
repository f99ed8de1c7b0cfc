"""Integration tests for REST API endpoints.

Uses httpx AsyncClient with ASGITransport against create_app() wired to
a scripted provider and in-memory stores.
"""

import json

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from conftest import make_response

from cyncro.api.auth import StaticTokenAuthenticator
from cyncro.api.rest import create_app
from cyncro.storage.conversations import ConversationMeta, NewMessage

AUTH = {"Authorization": "Bearer test-token"}
USER = "user-1"


def _parse_sse(body: str) -> list[dict]:
    events = []
    for chunk in body.split("\n\n"):
        if chunk.startswith("data: "):
            events.append(json.loads(chunk[len("data: "):]))
    return events


@pytest.fixture
def app(orchestrator, store, settings):
    return create_app(
        orchestrator=orchestrator,
        store=store,
        authenticator=StaticTokenAuthenticator({"test-token": USER}),
        settings=settings,
    )


@pytest_asyncio.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


# ---------------------------------------------------------------------------
# POST /assistant/chat
# ---------------------------------------------------------------------------


class TestChat:
    @pytest.mark.asyncio
    async def test_streams_turn(self, client, provider):
        provider.script = [make_response("hello")]

        resp = await client.post("/assistant/chat", json={"message": "hi", "context": {"page": "/"}}, headers=AUTH)

        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/event-stream")
        assert resp.headers["cache-control"] == "no-cache"
        assert resp.headers["x-accel-buffering"] == "no"
        events = _parse_sse(resp.text)
        assert [e["type"] for e in events] == ["conversation_id", "content", "done"]
        assert events[1]["text"] == "hello"
        assert events[2]["conversation_id"] == events[0]["conversation_id"]

    @pytest.mark.asyncio
    async def test_unauthenticated(self, client, provider):
        resp = await client.post("/assistant/chat", json={"message": "hi"})

        assert resp.status_code == 401
        assert resp.json() == {"error": "Unauthorized"}
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_wrong_token(self, client):
        resp = await client.post(
            "/assistant/chat", json={"message": "hi"}, headers={"Authorization": "Bearer nope"}
        )
        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_invalid_json(self, client):
        resp = await client.post(
            "/assistant/chat", content=b"{not json", headers={**AUTH, "content-type": "application/json"}
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "Invalid JSON body"

    @pytest.mark.asyncio
    async def test_empty_message_without_attachments(self, client, provider):
        resp = await client.post("/assistant/chat", json={"message": "   "}, headers=AUTH)

        assert resp.status_code == 400
        assert "Message or attachment is required" in resp.json()["error"]
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_attachment_only_is_accepted(self, client, provider):
        provider.script = [make_response("I see a receipt.")]
        body = {"message": "", "attachments": [{"name": "r.png", "type": "image/png", "size": 3, "data": "AAEC"}]}

        resp = await client.post("/assistant/chat", json=body, headers=AUTH)

        assert resp.status_code == 200
        assert [e["type"] for e in _parse_sse(resp.text)][-1] == "done"

    @pytest.mark.asyncio
    async def test_provider_error_is_in_stream(self, client, provider):
        from cyncro.errors import ProviderNotConfiguredError

        provider.script = [ProviderNotConfiguredError("openai provider is not configured: OPENAI_API_KEY is not set")]

        resp = await client.post("/assistant/chat", json={"message": "hi"}, headers=AUTH)

        assert resp.status_code == 200
        events = _parse_sse(resp.text)
        assert [e["type"] for e in events] == ["conversation_id", "error"]
        assert "OPENAI_API_KEY" in events[1]["error"]


# ---------------------------------------------------------------------------
# Conversations
# ---------------------------------------------------------------------------


class TestConversations:
    @pytest.mark.asyncio
    async def test_list_most_recent_first(self, client, store):
        first = await store.create_conversation(ConversationMeta(user_id=USER, title="first"))
        await store.create_conversation(ConversationMeta(user_id=USER, title="second"))
        await store.create_conversation(ConversationMeta(user_id="other", title="not mine"))
        await store.touch_conversation(USER, first)

        resp = await client.get("/assistant/conversations", headers=AUTH)

        assert resp.status_code == 200
        titles = [c["title"] for c in resp.json()["conversations"]]
        assert titles == ["first", "second"]

    @pytest.mark.asyncio
    async def test_create(self, client):
        resp = await client.post(
            "/assistant/conversations",
            json={"title": "Warranty question", "context": {"page": "/cases", "itemType": "case", "itemId": "c9"}},
            headers=AUTH,
        )

        assert resp.status_code == 201
        body = resp.json()
        assert body["title"] == "Warranty question"
        assert body["context_type"] == "case"
        assert body["context_id"] == "c9"

    @pytest.mark.asyncio
    async def test_get_with_messages(self, client, store):
        cid = await store.create_conversation(ConversationMeta(user_id=USER, title="t"))
        await store.append_messages(cid, USER, [
            NewMessage(role="user", content="hi"),
            NewMessage(role="assistant", content="hello", tool_calls=[{"tool_name": "list_cases"}]),
        ])

        resp = await client.get(f"/assistant/conversations/{cid}", headers=AUTH)

        assert resp.status_code == 200
        body = resp.json()
        assert body["conversation"]["id"] == cid
        assert [m["content"] for m in body["messages"]] == ["hi", "hello"]
        assert body["messages"][1]["tool_calls"] == [{"tool_name": "list_cases"}]

    @pytest.mark.asyncio
    async def test_get_unknown_is_404(self, client, store):
        other = await store.create_conversation(ConversationMeta(user_id="other"))

        assert (await client.get("/assistant/conversations/missing", headers=AUTH)).status_code == 404
        assert (await client.get(f"/assistant/conversations/{other}", headers=AUTH)).status_code == 404

    @pytest.mark.asyncio
    async def test_delete(self, client, store):
        cid = await store.create_conversation(ConversationMeta(user_id=USER))

        resp = await client.delete(f"/assistant/conversations/{cid}", headers=AUTH)

        assert resp.status_code == 200
        assert await store.get_conversation(USER, cid) is None
        assert (await client.delete(f"/assistant/conversations/{cid}", headers=AUTH)).status_code == 404

    @pytest.mark.asyncio
    async def test_requires_auth(self, client):
        assert (await client.get("/assistant/conversations")).status_code == 401
        assert (await client.delete("/assistant/conversations/x")).status_code == 401


class TestHealth:
    @pytest.mark.asyncio
    async def test_health_without_database(self, client):
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "healthy"
