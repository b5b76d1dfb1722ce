"""Application settings loaded from environment variables."""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./custodian.db"
    DATABASE_POOL_SIZE: int = 5
    DATABASE_MAX_OVERFLOW: int = 10

    # Runtime
    ENVIRONMENT: Literal["development", "test", "production"] = "development"
    DEBUG: bool = False
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"

    # Transition controller
    transition_conflict_retries: int = Field(default=1, ge=0)

    # Retention reaper
    retention_days: int = Field(default=180, ge=0)
    purge_transaction_timeout_seconds: float = Field(default=30.0, gt=0)
    purge_max_concurrency: int = Field(default=1, ge=1)
    purge_batch_size: int = Field(default=500, ge=1)
    purge_interval_seconds: int = Field(default=86400, ge=1)

    # Observability
    metrics_enabled: bool = True


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
