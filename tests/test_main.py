"""Tests for component wiring in cyncro.main."""

import pytest
from httpx import ASGITransport, AsyncClient

from cyncro.api.auth import StaticTokenAuthenticator
from cyncro.assistant.orchestrator import AssistantOrchestrator
from cyncro.config import Settings
from cyncro.llm import AnthropicProvider
from cyncro.main import _LazyProxy, build_app, create_components, shutdown_components
from cyncro.storage.conversations import InMemoryConversationStore, SqlConversationStore


def _settings(tmp_path, **overrides) -> Settings:
    values = {
        "_env_file": None,
        "llm_provider": "anthropic",
        "anthropic_api_key": "test-key",
        "database_url": "",
        "supabase_url": "",
        "supabase_service_role_key": "",
        "dev_auth_token": "dev-token",
        "local_storage_dir": str(tmp_path / "uploads"),
    }
    values.update(overrides)
    return Settings(**values)


class TestCreateComponents:
    @pytest.mark.asyncio
    async def test_development_wiring(self, tmp_path):
        components = await create_components(_settings(tmp_path))
        try:
            assert isinstance(components["store"], InMemoryConversationStore)
            assert isinstance(components["authenticator"], StaticTokenAuthenticator)
            assert isinstance(components["provider"], AnthropicProvider)
            assert isinstance(components["orchestrator"], AssistantOrchestrator)
            assert "database" not in components
        finally:
            await shutdown_components(components)

    @pytest.mark.asyncio
    async def test_sql_store_when_database_url_set(self, tmp_path):
        settings = _settings(tmp_path, database_url=f"sqlite+aiosqlite:///{tmp_path / 'a.db'}")

        components = await create_components(settings)
        try:
            assert isinstance(components["store"], SqlConversationStore)
        finally:
            await shutdown_components(components)


class TestLazyProxy:
    def test_unresolved_raises(self):
        proxy = _LazyProxy({}, "orchestrator")

        with pytest.raises(RuntimeError, match="not yet initialized"):
            proxy.run_turn  # noqa: B018

    def test_forwards_once_set(self):
        components = {}
        proxy = _LazyProxy(components, "store")
        components["store"] = InMemoryConversationStore()

        assert proxy.list_conversations == components["store"].list_conversations


class TestBuildApp:
    @pytest.mark.asyncio
    async def test_lifespan_and_dev_token(self, tmp_path):
        app = build_app(_settings(tmp_path))

        async with app.router.lifespan_context(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                health = await client.get("/health")
                listed = await client.get(
                    "/assistant/conversations", headers={"Authorization": "Bearer dev-token"}
                )

        assert health.json() == {"status": "healthy", "database": "memory"}
        assert listed.status_code == 200
        assert listed.json() == {"conversations": []}
