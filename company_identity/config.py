"""
Configuration management for company_identity.

Uses pydantic-settings for type-safe configuration with automatic
environment variable loading and validation.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from company_identity.constants import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_CACHE_TTL_HOURS,
    DEFAULT_CONFIDENCE_THRESHOLD,
    DEFAULT_COST_LIMIT,
    DEFAULT_INFERENCE_MODEL,
    DEFAULT_LEARNED_RETRY_THRESHOLD,
    DEFAULT_MAX_CACHE_ENTRIES,
    DEFAULT_MAX_CONCURRENT_BATCHES,
    DEFAULT_MAX_RETRIES,
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    DEFAULT_RETRY_BASE_DELAY_SECONDS,
)


class Settings(BaseSettings):
    """
    Resolution settings loaded from environment variables.

    All settings are validated at construction. Out-of-range values raise
    a ValidationError, ensuring fail-fast behavior before any row is touched.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",  # Ignore extra env vars
    )

    # Inference provider
    openai_api_key: str = Field(
        default="",
        description="OpenAI API key for the inference provider",
    )
    inference_model: str = Field(
        default=DEFAULT_INFERENCE_MODEL,
        description="Chat model used for batched identification",
    )

    # Batching
    batch_size: int = Field(
        default=DEFAULT_BATCH_SIZE,
        ge=1,
        description="Rows per inference call",
    )
    max_concurrent_batches: int = Field(
        default=DEFAULT_MAX_CONCURRENT_BATCHES,
        ge=1,
        description="Hard ceiling on in-flight inference calls",
    )
    request_timeout_seconds: float = Field(
        default=DEFAULT_REQUEST_TIMEOUT_SECONDS,
        gt=0,
        description="Timeout per inference call (counts as retryable)",
    )
    max_retries: int = Field(
        default=DEFAULT_MAX_RETRIES,
        ge=0,
        description="Retries after the first attempt for transient failures",
    )
    retry_base_delay_seconds: float = Field(
        default=DEFAULT_RETRY_BASE_DELAY_SECONDS,
        ge=0,
        description="Backoff base delay, doubled on every retry",
    )

    # Resolution policy
    confidence_threshold: float = Field(
        default=DEFAULT_CONFIDENCE_THRESHOLD,
        ge=0.0,
        le=1.0,
        description="Deterministic results at or above this skip inference",
    )
    learned_retry_threshold: float = Field(
        default=DEFAULT_LEARNED_RETRY_THRESHOLD,
        ge=0.0,
        le=1.0,
        description="Minimum learned-pattern confidence to replace Unknown in the second pass",
    )
    cost_limit: float | None = Field(
        default=DEFAULT_COST_LIMIT,
        ge=0.0,
        description="USD ceiling for inference spend per job (None = unlimited)",
    )

    # Result cache
    cache_ttl_hours: int = Field(
        default=DEFAULT_CACHE_TTL_HOURS,
        ge=1,
        description="Cached results expire after this many hours",
    )
    max_cache_entries: int = Field(
        default=DEFAULT_MAX_CACHE_ENTRIES,
        ge=1,
        description="Result cache capacity before eviction",
    )

    # Storage
    pattern_store_path: Path = Field(
        default=Path("data/learned_patterns.json"),
        description="JSON snapshot of learned patterns",
    )
    cache_dir: Path = Field(
        default=Path("data/cache"),
        description="diskcache directory for results persisted across runs",
    )

    @field_validator("openai_api_key", "inference_model", mode="before")
    @classmethod
    def strip_whitespace(cls, v: str) -> str:
        """Strip whitespace from string values."""
        if isinstance(v, str):
            return v.strip()
        return v

    @field_validator("cost_limit", mode="before")
    @classmethod
    def empty_string_to_none(cls, v: float | str | None) -> float | str | None:
        """Treat an empty COST_LIMIT as unlimited."""
        if isinstance(v, str):
            v = v.strip()
            return v if v else None
        return v


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()


def get_openai_api_key() -> str:
    """Get OpenAI API key from settings."""
    key = get_settings().openai_api_key
    if not key:
        raise ValueError("OPENAI_API_KEY not set in .env file")
    return key
