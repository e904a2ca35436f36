"""Runtime settings loaded from the environment."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="DROPSCORE_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Storage
    store_backend: Literal["redis", "memory"] = "redis"
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        validation_alias=AliasChoices("DROPSCORE_REDIS_URL", "REDIS_URL"),
    )
    redis_key_prefix: str = "dropscore"
    store_timeout_seconds: float = Field(default=2.0, gt=0)

    # Leaderboard
    top_n: int = Field(default=10, ge=1, le=100)
    cache_ttl_seconds: float = Field(default=30.0, gt=0)

    # Anti-cheat
    rate_limit_max_submissions: int = Field(default=5, ge=1)
    rate_limit_window_seconds: float = Field(default=60.0, gt=0)
    rate_limit_hourly_max_submissions: int = Field(default=50, ge=0)  # 0 disables
    min_survival_seconds: float = Field(default=0.05, gt=0)
    max_survival_seconds: float = Field(default=20.0, gt=0)
    max_clock_skew_seconds: float = Field(default=600.0, ge=0)
    signature_secret: str = "dropscore-dev-secret"

    # Retention
    retention_days: int = Field(default=90, ge=1)

    log_level: str = "INFO"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
