# feedsync/config.py
"""
Centralized configuration using pydantic-settings.

All settings are read from environment variables or .env file.
Defaults match the values the mobile client ships with.
"""

import os
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Feed sync settings loaded from environment variables.

    Priority: environment variables > .env file > defaults
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",  # Ignore unknown env vars
    )

    # --- Storage ---
    REDIS_URL: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL for the persisted feed cache"
    )
    STORAGE_BACKEND: str = Field(
        default="memory",
        description="Key-value backend: 'memory' or 'redis'"
    )

    # --- Server ---
    HOST: str = Field(default="127.0.0.1", description="Server bind host")
    PORT: int = Field(default=8888, description="Server bind port")
    SERVICE_NAME: str = Field(default="feedsync", description="Service name for traces")

    # --- Debug / Logging ---
    DEBUG: bool = Field(default=False, description="Enable debug mode")
    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)"
    )

    # --- Offline feed cache ---
    FEED_CACHE_PREFIX: str = Field(default="soonlist_feed_cache_")
    FEED_CACHE_MAX_BYTES: int = Field(
        default=5 * 1024 * 1024,
        description="Serialized size budget per feed"
    )
    FEED_CACHE_FRESH_MINUTES: int = Field(default=60)
    STALE_CACHE_MINUTES: int = Field(
        default=120,
        description="Age after which foreign feed caches are swept"
    )

    # --- Stable timestamp ---
    STABLE_TIMESTAMP_GRID_MINUTES: int = Field(default=15)
    STABLE_TIMESTAMP_POLL_SECONDS: float = Field(default=60.0)

    # --- User sync retry ---
    SYNC_MAX_RETRIES: int = Field(default=5)
    SYNC_RETRY_BASE_SECONDS: float = Field(default=1.0)
    SYNC_RETRY_MAX_SECONDS: float = Field(default=16.0)

    # --- Batches ---
    BATCH_RETENTION_SECONDS: float = Field(
        default=300.0,
        description="How long a completed batch is kept before the sweep drops it"
    )

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in allowed:
            raise ValueError(f"LOG_LEVEL must be one of {allowed}")
        return v_upper

    @field_validator("STORAGE_BACKEND")
    @classmethod
    def validate_storage_backend(cls, v: str) -> str:
        v_lower = v.lower()
        if v_lower not in {"memory", "redis"}:
            raise ValueError("STORAGE_BACKEND must be 'memory' or 'redis'")
        return v_lower

    @field_validator("STABLE_TIMESTAMP_GRID_MINUTES")
    @classmethod
    def validate_grid(cls, v: int) -> int:
        if v <= 0 or 60 % v != 0:
            raise ValueError("STABLE_TIMESTAMP_GRID_MINUTES must divide 60")
        return v


@lru_cache
def get_settings() -> Settings:
    """Return cached Settings instance (singleton pattern)."""
    return Settings()


settings = get_settings()


# --- Module-level exports ---
HOST: str = settings.HOST
PORT: int = settings.PORT
DEBUG: bool = settings.DEBUG
LOG_LEVEL: str = settings.LOG_LEVEL
REDIS_URL: str = settings.REDIS_URL
SERVICE_NAME: str = settings.SERVICE_NAME

# --- Paths (computed, not from env) ---
PROJECT_ROOT: str = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
LOGS_PATH: str = os.path.join(PROJECT_ROOT, "logs")
