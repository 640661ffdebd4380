"""Runtime configuration using Pydantic Settings."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .constants import (
    CONTENT_CACHE_MAX_KEYS,
    CONTENT_CACHE_TTL,
    DB_PATH,
    DEFAULT_OPENAI_MODEL,
    DEFAULT_OPENAI_TIMEOUT,
    SYNC_BATCH_DELAY,
    SYNC_BATCH_SIZE,
    SYNC_THROTTLE_SECONDS,
)

UnknownFieldPolicy = Literal["match", "no_match", "error"]


class Settings(BaseSettings):
    """Application configuration, read from ``INBOXOWL_*`` environment variables."""

    model_config = SettingsConfigDict(env_prefix="INBOXOWL_", env_file=".env", extra="ignore")

    db_path: Path = DB_PATH
    user: str = "me"

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "WARNING"
    log_format: Literal["console", "json"] = "console"

    openai_api_key: SecretStr | None = None
    openai_base_url: str | None = None
    openai_model: str = DEFAULT_OPENAI_MODEL
    openai_timeout: float = Field(default=DEFAULT_OPENAI_TIMEOUT, gt=0)

    # What a condition on a field the engine does not know evaluates to.
    unknown_field_policy: UnknownFieldPolicy = "match"

    sync_throttle_seconds: float = Field(default=SYNC_THROTTLE_SECONDS, ge=0)
    sync_batch_size: int = Field(default=SYNC_BATCH_SIZE, ge=1)
    sync_batch_delay: float = Field(default=SYNC_BATCH_DELAY, ge=0)
    content_cache_ttl: float = Field(default=CONTENT_CACHE_TTL, gt=0)
    content_cache_max_keys: int = Field(default=CONTENT_CACHE_MAX_KEYS, ge=1)
    cache_eviction: Literal["fifo", "lru"] = "fifo"

    @field_validator("db_path", mode="before")
    @classmethod
    def validate_path(cls, v: str | Path) -> Path:
        """Convert string to Path, expanding ``~``."""
        return Path(v).expanduser() if isinstance(v, str) else v

    @field_validator("openai_api_key", mode="before")
    @classmethod
    def blank_key_is_none(cls, v: str | SecretStr | None) -> str | SecretStr | None:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @property
    def generative_enabled(self) -> bool:
        return self.openai_api_key is not None
