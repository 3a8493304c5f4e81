"""
Application configuration via environment variables.

Uses Pydantic BaseSettings to load and validate all config from env vars
or a .env.local file. Every setting has a sensible default for local
development so the service can start with minimal configuration.
"""

from __future__ import annotations

from enum import Enum
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Deployment environment selector."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class Settings(BaseSettings):
    """
    Central configuration for the intake service.

    Values are loaded from environment variables first, falling back
    to a `.env.local` file in the project root. Secrets should NEVER
    be committed.
    """

    model_config = SettingsConfigDict(
        env_file=".env.local",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Environment ──────────────────────────────────────────────
    environment: Environment = Environment.DEVELOPMENT

    # ── LLM Extraction ───────────────────────────────────────────
    openai_api_key: str = Field(default="", description="API key for the chat-completions endpoint")
    openai_base_url: str = Field(default="https://api.openai.com/v1", description="OpenAI-compatible base URL")
    extraction_model: str = Field(default="gpt-4o-mini", description="Model used for field extraction")
    extraction_timeout_seconds: float = Field(default=30.0, gt=0, le=30, description="Per-request LLM timeout")
    extraction_max_retries: int = Field(default=2, ge=0, le=5, description="Retries after the first LLM attempt")

    # ── Claim Number Recovery ────────────────────────────────────
    claim_scan_max_turns: int = Field(default=400, ge=10, le=5000, description="Hard cap on transcript turns scanned")

    # ── Supabase ─────────────────────────────────────────────────
    supabase_url: str = Field(default="", description="Supabase project URL")
    supabase_service_key: str = Field(default="", description="Supabase service-role key")

    # ── Redis (per-caller locking) ───────────────────────────────
    redis_url: str = Field(default="", description="Redis URL; empty means in-process locks")
    lock_timeout_seconds: float = Field(default=60.0, gt=0, description="Auto-release time for a caller lock")
    lock_wait_seconds: float = Field(default=30.0, gt=0, description="Max time to wait for a caller lock")

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO", description="Root log level")

    # ── Derived helpers ──────────────────────────────────────────

    @property
    def is_production(self) -> bool:
        return self.environment == Environment.PRODUCTION

    @property
    def is_development(self) -> bool:
        return self.environment == Environment.DEVELOPMENT

    @property
    def uses_redis_locks(self) -> bool:
        return bool(self.redis_url)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Return cached Settings instance.

    Using lru_cache ensures we read env vars exactly once, and every
    module that calls ``get_settings()`` gets the same object.
    """
    return Settings()
