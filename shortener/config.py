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
    backend = settings.STORAGE_BACKEND

**Step 3 — Override in tests**::
    settings = Settings(STORAGE_BACKEND=StorageBackend.DATABASE, DATABASE_URL="sqlite+aiosqlite://")

Key Behaviours
===============
- Settings are cached after first access for performance.
- Environment variables override defaults automatically.
- Deletion pipeline sizes must be positive; invalid values raise ValidationError.

Classes:
    Settings:  Pydantic model for all configuration values.

"""

__all__ = ["Settings", "get_settings"]

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from shortener.enums import StorageBackend


class Settings(BaseSettings):
    APP_NAME: str = "url-shortener"
    APP_ENV: str = "development"
    LOG_LEVEL: str = "INFO"
    BASE_URL: str = "http://localhost:8080"

    # Storage
    STORAGE_BACKEND: StorageBackend = StorageBackend.MEMORY
    FILE_STORAGE_PATH: str = "short-url-db.json"
    DATABASE_URL: str = "postgresql+asyncpg://urlshortener:urlshortener@db:5432/urlshortener"
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 10

    # Short URL config
    SHORT_CODE_LENGTH: int = Field(8, ge=1)

    # Authentication
    JWT_SECRET: str = "change-me"
    AUTH_COOKIE_NAME: str = "token"

    # Trusted subnet for /api/internal/stats
    TRUSTED_SUBNET: str = ""
    TRUSTED_SUBNET_DENY_IF_NOT_CONFIGURED: bool = True

    # Deletion pipeline tuning
    DELETE_WORKER_COUNT: int = Field(4, ge=1)
    DELETE_BATCH_SIZE: int = Field(100, ge=1)
    DELETE_BATCH_WINDOW_SECONDS: float = Field(2.0, gt=0)
    DELETE_SUB_BATCH_SIZE: int = Field(50, ge=1)
    DELETE_INGRESS_CAPACITY: int = Field(10_000, ge=1)
    DELETE_FLUSH_CAPACITY: int = Field(100, ge=1)
    DELETE_SHUTDOWN_TIMEOUT_SECONDS: float = Field(5.0, gt=0)

    # HTTP compression; empty bodies (204, redirects) stay uncompressed
    GZIP_MINIMUM_SIZE: int = Field(1, ge=1)

    # gRPC surface
    GRPC_ENABLED: bool = False
    GRPC_ADDRESS: str = "[::]:3200"

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    return Settings()
