"""Typed settings configuration - single source of truth."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Local store
    local_database_url: str = "sqlite+aiosqlite:///tripsync.db"

    # Remote store (unset = offline only)
    remote_base_url: str | None = None
    remote_api_token: str = ""
    remote_timeout_sec: float = 10.0
    subscription_poll_seconds: float = 15.0

    # Geocoding
    geocoder_base_url: str = "https://nominatim.openstreetmap.org/search"
    geocoder_user_agent: str = "tripsync/0.1"
    geocoder_timeout_sec: float = 4.0

    # Sync queue backoff (milliseconds)
    sync_backoff_base_ms: int = 500
    sync_backoff_max_ms: int = 60_000

    # Retry jitter (milliseconds)
    sync_retry_jitter_min_ms: int = 200
    sync_retry_jitter_max_ms: int = 500

    # Undo history depth
    undo_max_size: int = 50

    # Trip defaults
    default_currency: str = "USD"
    default_timezone: str = "UTC"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
