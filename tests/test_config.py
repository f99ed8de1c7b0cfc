"""Tests for Settings loading and validation."""

import pytest
from pydantic import ValidationError

from cyncro.config import Settings


class TestSettings:
    def test_defaults(self, monkeypatch):
        for var in ("LLM_PROVIDER", "LLM_MODEL", "DATABASE_URL", "CYNCRO_MAX_ITERATIONS"):
            monkeypatch.delenv(var, raising=False)

        settings = Settings(_env_file=None)

        assert settings.llm_provider == "anthropic"
        assert settings.max_iterations == 5
        assert settings.history_limit == 20
        assert settings.pdf_min_text_chars == 10
        assert settings.database_url == ""

    def test_vendor_vars_are_unprefixed(self, monkeypatch):
        monkeypatch.setenv("LLM_PROVIDER", "openai")
        monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
        monkeypatch.setenv("CYNCRO_MAX_ITERATIONS", "3")

        settings = Settings(_env_file=None)

        assert settings.llm_provider == "openai"
        assert settings.api_key_for("openai") == "sk-env"
        assert settings.max_iterations == 3

    def test_unknown_provider_rejected(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, llm_provider="mistral")

    @pytest.mark.parametrize(
        "overrides",
        [{"max_iterations": 0}, {"history_limit": -1}, {"turn_timeout": 0}],
    )
    def test_bounds(self, overrides):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, **overrides)

    def test_supabase_configured(self):
        assert not Settings(_env_file=None, supabase_url="", supabase_service_role_key="").supabase_configured
        assert Settings(
            _env_file=None, supabase_url="https://proj.supabase.co", supabase_service_role_key="k",
        ).supabase_configured
