"""Cyncro assistant entry point.

Initializes all components and starts the server:
  Settings -> Database/Store -> Provider -> Tools -> Orchestrator -> App -> Uvicorn

Uses Starlette lifespan to manage component lifecycle on the same event
loop as uvicorn.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import httpx
import uvicorn
from starlette.applications import Starlette

from cyncro.api.auth import StaticTokenAuthenticator, SupabaseAuthenticator
from cyncro.assistant.attachments import AttachmentPreprocessor
from cyncro.assistant.catalog import register_catalog_tools
from cyncro.assistant.orchestrator import AssistantOrchestrator
from cyncro.assistant.pdf import PypdfTextExtractor
from cyncro.assistant.tools import ToolDispatcher
from cyncro.config import Settings
from cyncro.llm import create_provider
from cyncro.storage.blobs import LocalBlobStore, SupabaseBlobStore
from cyncro.storage.conversations import InMemoryConversationStore, SqlConversationStore
from cyncro.storage.database import Database
from cyncro.storage.postgrest import PostgrestRecordStore
from cyncro.storage.records import InMemoryRecordStore

logger = logging.getLogger(__name__)


async def create_components(settings: Settings) -> dict[str, Any]:
    """Initialize all components in dependency order.

    1. Shared httpx client for Supabase calls
    2. Conversation store - SQL when DATABASE_URL is set, else in-memory
    3. Record store, blob store, authenticator - Supabase when configured
    4. LLM provider - the adapter selected by LLM_PROVIDER
    5. Tool dispatcher with the catalog registered
    6. Orchestrator
    """
    components: dict[str, Any] = {}
    http = httpx.AsyncClient(timeout=httpx.Timeout(connect=10.0, read=30.0, write=30.0, pool=10.0))
    components["http"] = http

    if settings.database_url:
        database = Database(settings)
        await database.connect()
        await database.create_tables()
        components["database"] = database
        store = SqlConversationStore(database)
    else:
        store = InMemoryConversationStore()
    components["store"] = store

    if settings.supabase_configured:
        records = PostgrestRecordStore(settings.supabase_url, settings.supabase_service_role_key, http_client=http)
        authenticator = SupabaseAuthenticator(
            settings.supabase_url, settings.supabase_anon_key or settings.supabase_service_role_key, http_client=http
        )
    else:
        records = InMemoryRecordStore()
        authenticator = StaticTokenAuthenticator({settings.dev_auth_token: settings.dev_user_id})
    components["authenticator"] = authenticator

    if settings.storage_backend == "supabase" and settings.supabase_configured:
        blobs = SupabaseBlobStore(
            settings.supabase_url, settings.supabase_service_role_key, settings.storage_bucket, http_client=http
        )
    else:
        blobs = LocalBlobStore(settings.local_storage_dir)

    provider = create_provider(settings)
    components["provider"] = provider

    dispatcher = ToolDispatcher()
    register_catalog_tools(dispatcher, records)

    components["orchestrator"] = AssistantOrchestrator(
        provider=provider,
        store=store,
        preprocessor=AttachmentPreprocessor(blobs, PypdfTextExtractor(), settings),
        dispatcher=dispatcher,
        settings=settings,
    )
    return components


async def shutdown_components(components: dict[str, Any]) -> None:
    """Graceful shutdown in reverse order."""
    logger.info("Shutting down Cyncro assistant...")

    provider = components.get("provider")
    if provider:
        await provider.close()

    http = components.get("http")
    if http:
        await http.aclose()

    database = components.get("database")
    if database:
        await database.disconnect()

    logger.info("Cyncro assistant shutdown complete.")


class _LazyProxy:
    """Forwards attribute access to a component created in lifespan.

    Lets create_app() receive component references before lifespan has
    initialized them.
    """

    def __init__(self, components: dict[str, Any], key: str) -> None:
        object.__setattr__(self, "_components", components)
        object.__setattr__(self, "_key", key)

    def _resolve(self) -> Any:
        components = object.__getattribute__(self, "_components")
        key = object.__getattribute__(self, "_key")
        obj = components.get(key)
        if obj is None:
            raise RuntimeError(f"Component '{key}' not yet initialized: lifespan hasn't started")
        return obj

    def __getattr__(self, name: str) -> Any:
        return getattr(self._resolve(), name)


def build_app(settings: Settings) -> Starlette:
    """Build the Starlette app; components are created in its lifespan."""
    components: dict[str, Any] = {}

    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        components.update(await create_components(settings))
        app.state.components = components
        logger.info(
            "Assistant ready: provider=%s model=%s max_iterations=%d turn_timeout=%.0fs",
            settings.llm_provider,
            components["provider"].get_default_model(),
            settings.max_iterations,
            settings.turn_timeout,
        )
        yield
        await shutdown_components(components)

    from cyncro.api.rest import create_app

    return create_app(
        orchestrator=_LazyProxy(components, "orchestrator"),
        store=_LazyProxy(components, "store"),
        authenticator=_LazyProxy(components, "authenticator"),
        settings=settings,
        database=_LazyProxy(components, "database") if settings.database_url else None,
        lifespan=lifespan,
    )


def main() -> None:
    """Entry point: parse settings, build app, run server."""
    settings = Settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    logger.info("Starting Cyncro assistant (provider=%s)", settings.llm_provider)
    logger.info("Database: %s", "configured" if settings.database_url else "in-memory")

    if not settings.api_key_for(settings.llm_provider):
        logger.warning(
            "No API key set for provider %s: chat turns will fail with a configuration error",
            settings.llm_provider,
        )
    if not settings.supabase_configured:
        logger.warning(
            "SUPABASE_URL / SUPABASE_SERVICE_ROLE_KEY not set: using in-memory records and %s",
            "dev token auth" if settings.dev_auth_token else "no accepted credentials",
        )

    app = build_app(settings)

    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
    )


if __name__ == "__main__":
    main()
