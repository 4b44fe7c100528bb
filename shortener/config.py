"""Configuration management for the short-link engine.

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
**Step 1 — Build once at startup**::
    from shortener.config import get_settings
    settings = get_settings()

**Step 2 — Pass it explicitly**::
    service = AllocationService(store, generator, settings, logger)

**Step 3 — Override in tests**::
    settings = Settings(MAX_ALLOCATION_ATTEMPTS=2, CACHE_MAX_ENTRIES=4)

Key Behaviours
===============
- Settings are cached after first access for performance.
- Environment variables override defaults automatically.
- Settings are frozen; services never read the environment themselves.
- Invalid alphabets or non-positive limits raise ValidationError.

Classes:
    Settings:  Pydantic model for all configuration values.

"""

__all__ = ["Settings", "get_settings"]

from functools import lru_cache
from typing import Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

BASE62_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ"
CODE_COLUMN_WIDTH = 20


class Settings(BaseSettings):
    APP_NAME: str = "url-shortener"
    APP_ENV: str = "development"
    BASE_URL: str = "http://localhost:8080"
    LOG_LEVEL: str = "INFO"

    # PostgreSQL
    DATABASE_URL: str = "postgresql+asyncpg://urlshortener:urlshortener@db:5432/urlshortener"

    # Redis (id block allocation for the sequential generator)
    REDIS_URL: str = "redis://redis:6379/0"

    # Backends
    MAPPING_STORE_BACKEND: Literal["sql", "memory"] = "sql"
    CODE_STRATEGY: Literal["sequential", "random"] = "sequential"

    # Short code space
    CODE_ALPHABET: str = BASE62_ALPHABET
    SHORT_CODE_LENGTH: int = 7
    ID_ALLOCATOR_KEY: str = "id_allocator:url"
    ID_BLOCK_SIZE: int = 1000

    # Allocation
    MAX_ALLOCATION_ATTEMPTS: int = 5
    MAX_DESTINATION_LENGTH: int = 2048

    # Store calls
    STORE_TIMEOUT_SECONDS: float = 2.0
    STORE_MAX_RETRIES: int = 3
    STORE_RETRY_BASE_DELAY_SECONDS: float = 0.05
    STORE_RETRY_MAX_DELAY_SECONDS: float = 1.0

    # Resolution cache
    CACHE_MAX_ENTRIES: int = 10_000
    CACHE_TTL_SECONDS: float = 300.0

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        frozen=True,
        extra="ignore",
    )

    @field_validator("CODE_ALPHABET")
    @classmethod
    def validate_alphabet(cls, v: str) -> str:
        if len(v) < 2:
            raise ValueError("Alphabet needs at least two symbols")
        if len(set(v)) != len(v):
            raise ValueError("Alphabet symbols must be unique")
        return v

    @field_validator("SHORT_CODE_LENGTH")
    @classmethod
    def validate_code_length(cls, v: int) -> int:
        if v < 1 or v > CODE_COLUMN_WIDTH:
            raise ValueError(f"Short code length must be between 1 and {CODE_COLUMN_WIDTH}")
        return v

    @field_validator("MAX_ALLOCATION_ATTEMPTS", "ID_BLOCK_SIZE", "MAX_DESTINATION_LENGTH")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Value must be positive")
        return v

    @field_validator("CACHE_TTL_SECONDS")
    @classmethod
    def validate_cache_ttl(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Cache TTL must be positive")
        return v

    @field_validator("STORE_MAX_RETRIES", "CACHE_MAX_ENTRIES")
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("Value must not be negative")
        return v

    @model_validator(mode="after")
    def validate_retry_delays(self) -> "Settings":
        if self.STORE_RETRY_BASE_DELAY_SECONDS < 0:
            raise ValueError("Retry delay must not be negative")
        if self.STORE_RETRY_MAX_DELAY_SECONDS < self.STORE_RETRY_BASE_DELAY_SECONDS:
            raise ValueError("Maximum retry delay must be at least the base delay")
        if self.STORE_TIMEOUT_SECONDS <= 0:
            raise ValueError("Store timeout must be positive")
        return self


@lru_cache()
def get_settings() -> Settings:
    return Settings()
