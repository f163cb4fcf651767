"""
Configuration management for the DocIngest pipeline.

This module centralizes environment-driven configuration using Pydantic's
`BaseSettings`. Extractors, the document store, the monitor and the Celery
tasks all consume the shared `settings` instance.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import AnyUrl, Field, PositiveInt, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration sourced from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", case_sensitive=False)

    # General application settings
    APP_NAME: str = "DocIngest"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False
    ENVIRONMENT: str = Field("development", pattern=r"^(development|staging|production)$")
    LOG_LEVEL: str = "INFO"

    # Document store
    DOCUMENT_STORE_BACKEND: str = Field("memory", pattern=r"^(memory|mongodb)$")
    MONGODB_URL: AnyUrl = Field("mongodb://localhost:27017")
    MONGODB_DATABASE: str = "docingest"

    # Celery broker / result backend
    REDIS_URL: AnyUrl = Field("redis://localhost:6379/0")

    # Uploaded files live under this root; "/uploads/x.pdf" style paths are mapped into it
    UPLOAD_ROOT: Path = Field(default_factory=lambda: Path("uploads"))

    # Extraction limits
    DOCUMENT_PROCESSING_TIMEOUT_SECONDS: float = 120.0
    WEBSITE_FETCH_TIMEOUT_SECONDS: float = 30.0

    # Document monitor
    MAX_PROCESSING_MINUTES: PositiveInt = 30
    MONITOR_INTERVAL_MINUTES: float = 15.0
    MONITOR_INITIAL_DELAY_SECONDS: float = 60.0
    MONITOR_BATCH_SIZE: PositiveInt = 50

    # Knowledge base indexing
    ENABLE_KNOWLEDGE_INDEXING: bool = True
    CHUNK_SIZE: PositiveInt = 1500
    CHUNK_OVERLAP: int = 150
    OPENAI_API_KEY: Optional[str] = None
    EMBEDDING_MODEL: str = "text-embedding-ada-002"
    EMBEDDING_DIMENSION: PositiveInt = 1536

    # Monitoring / tracing
    PROMETHEUS_PORT: int = 9090
    OTEL_EXPORTER_OTLP_ENDPOINT: Optional[AnyUrl] = None
    OTEL_EXPORTER_OTLP_HEADERS: Optional[str] = None

    @field_validator("LOG_LEVEL", mode="before")
    def _upper_log_level(cls, value: str) -> str:
        return str(value or "INFO").upper()

    @field_validator("CHUNK_OVERLAP")
    def _non_negative_overlap(cls, value: int) -> int:
        if value < 0:
            raise ValueError("CHUNK_OVERLAP must be >= 0")
        return value


@lru_cache()
def get_settings() -> Settings:
    """Return a cached `Settings` instance."""

    return Settings()


# Singleton-style settings instance for modules that prefer direct access.
settings = get_settings()
