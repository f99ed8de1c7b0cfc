"""Settings via pydantic-settings with CYNCRO_ env prefix.

Vendor credentials and the provider switch use unprefixed aliases
(ANTHROPIC_API_KEY, LLM_PROVIDER, ...) so the same .env file works for
every service that talks to those vendors.
"""

from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ProviderName = Literal["anthropic", "openai", "google"]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="CYNCRO_", env_file=".env", populate_by_name=True)

    # LLM provider selection
    llm_provider: ProviderName = Field("anthropic", validation_alias="LLM_PROVIDER")
    llm_model: str = Field("", validation_alias="LLM_MODEL")  # empty -> adapter default
    anthropic_api_key: str = Field("", validation_alias="ANTHROPIC_API_KEY")
    openai_api_key: str = Field("", validation_alias="OPENAI_API_KEY")
    google_api_key: str = Field("", validation_alias="GOOGLE_AI_API_KEY")
    anthropic_base_url: str = "https://api.anthropic.com"
    openai_base_url: str = "https://api.openai.com/v1"
    api_timeout_connect: int = 10  # seconds
    api_timeout_read: int = 120  # seconds

    # Agentic loop
    max_iterations: int = 5  # model calls per user turn
    history_limit: int = 20  # messages loaded per turn
    max_tokens: int = 4096
    temperature: float | None = None
    turn_timeout: float = 60.0  # wall clock seconds for a whole turn
    stream_queue_size: int = 64

    # Attachments
    pdf_min_text_chars: int = 10
    max_attachment_bytes: int = 20 * 1024 * 1024

    # Persistence
    database_url: str = Field("", validation_alias="DATABASE_URL")  # empty -> in-memory
    db_pool_size: int = 10
    db_max_overflow: int = 5

    # Blob storage
    storage_backend: Literal["local", "supabase"] = "local"
    storage_bucket: str = "receipts"
    local_storage_dir: str = "/tmp/cyncro-uploads"

    # Supabase (auth, storage, domain records)
    supabase_url: str = Field("", validation_alias="SUPABASE_URL")
    supabase_anon_key: str = Field("", validation_alias="SUPABASE_ANON_KEY")
    supabase_service_role_key: str = Field("", validation_alias="SUPABASE_SERVICE_ROLE_KEY")
    dev_auth_token: str = ""  # accepted as a bearer token when Supabase is not configured
    dev_user_id: str = "dev-user"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "info"

    @model_validator(mode="after")
    def _validate_bounds(self) -> "Settings":
        if self.max_iterations < 1:
            raise ValueError("max_iterations must be >= 1")
        if self.history_limit < 0:
            raise ValueError("history_limit must be >= 0")
        if self.turn_timeout <= 0:
            raise ValueError("turn_timeout must be > 0")
        return self

    def api_key_for(self, provider: ProviderName) -> str:
        return {
            "anthropic": self.anthropic_api_key,
            "openai": self.openai_api_key,
            "google": self.google_api_key,
        }[provider]

    @property
    def supabase_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_service_role_key)
