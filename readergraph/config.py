"""Tunables for the graph cache, read from the environment or a local .env.

A module-level ``settings`` instance is the default for every component;
tests and embedding applications pass their own ``Settings`` explicitly.
"""

from __future__ import annotations

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Cache lifetimes, discovery bounds and upstream endpoint."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Durable store ---
    redis_url: str = "redis://localhost:6379/0"  # "memory://" = in-process only
    redis_key_prefix: str = "readergraph:"

    # --- Graph API ---
    api_base_url: str = "http://localhost:8080"
    http_timeout_seconds: float = 10.0
    http_retry_attempts: int = 3
    http_retry_initial_wait: float = 0.5
    http_retry_jitter: float = 0.5

    # --- Cache lifetimes ---
    chapter_cache_ttl_seconds: float = 24 * 60 * 60
    manifest_ttl_seconds: float = 15 * 60

    # --- Event discovery ---
    discovery_delay_seconds: float = 0.05
    discovery_empty_streak_limit: int = Field(default=2, ge=1)
    discovery_max_events: int = Field(default=500, ge=1)

    # --- Materialization ---
    default_node_weight: float = 3
    position_cache_size: int = 500

    # --- Logging ---
    log_level: str = "INFO"
    log_format: str = "json"

    @field_validator("api_base_url", mode="before")
    @classmethod
    def _normalize_base_url(cls, value: object) -> object:
        # paths are joined with a leading slash
        return value.rstrip("/") if isinstance(value, str) else value


settings = Settings()
