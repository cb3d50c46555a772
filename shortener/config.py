"""Configuration management for the URL shortener service.

This module provides centralized configuration management using Pydantic BaseSettings
with environment variable support and caching for performance.

Flow Diagram — get_settings()
=============================
::
    ┌─────────────┐
    │  Call get_  │
    │  settings() │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Check cache  │
    │ (lru_cache)  │
    └──────┬──────┘
    HIT?  │
    ┌─────┴─────┐
    │ NO         │ YES
    ▼            ▼
┌─────────┐  ┌─────────┐
│ Create  │  │ Return  │
│ Settings│  │ cached  │
│ instance│  │ value   │
└─────────┘  └─────────┘

How to Use
===========
**Step 1 — Import**::
    from shortener.config import get_settings

**Step 2 — Get settings**::
    settings = get_settings()
    range_size = settings.ID_RANGE_SIZE

Key Behaviours
===============
- Settings are cached after first access for performance.
- Environment variables override defaults automatically.
- Non-positive sizes, windows and intervals raise ValidationError at startup.

Classes:
    Settings:  Pydantic model for all configuration values.

"""

__all__ = ["Settings", "get_settings"]

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    APP_NAME: str = "url-shortener"
    APP_ENV: str = "development"
    BASE_URL: str = "http://localhost:8080"
    LOG_LEVEL: str = "INFO"

    # Durable store
    DATABASE_URL: str = "postgresql+asyncpg://urlshortener:urlshortener@db:5432/urlshortener"
    DATABASE_POOL_SIZE: int = Field(default=20, gt=0)
    DATABASE_MAX_OVERFLOW: int = Field(default=10, ge=0)
    DURABLE_STORE_TIMEOUT_SECONDS: float = Field(default=5.0, gt=0)

    # Fast store
    REDIS_URL: str = "redis://redis:6379/0"
    FAST_STORE_TIMEOUT_SECONDS: float = Field(default=0.5, gt=0)

    # Identifier allocation
    ID_SEQUENCE_NAME: str = "url_sequence"
    ID_RANGE_SIZE: int = Field(default=100, gt=0)

    # Link lifetime and metadata cache
    LINK_TTL_DAYS: int = Field(default=30, gt=0)
    LINK_CACHE_TTL_SECONDS: int = Field(default=3600, gt=0)

    # Rate limiting (fixed window per client)
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_MAX_REQUESTS: int = Field(default=100, gt=0)
    RATE_LIMIT_WINDOW_SECONDS: int = Field(default=60, gt=0)

    # Write-back sync
    SYNC_ENABLED: bool = True
    SYNC_INTERVAL_SECONDS: float = Field(default=30.0, gt=0)
    SYNC_METRICS_PORT: int = 9300

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
    )


@lru_cache()
def get_settings() -> Settings:
    return Settings()
