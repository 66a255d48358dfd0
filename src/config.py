"""Application configuration using pydantic-settings."""

from functools import lru_cache
from typing import Literal

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Application
    app_name: str = "ChunkStore"
    app_version: str = "0.1.0"
    debug: bool = False

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # Rate limiting (query and answer endpoints)
    rate_limit_requests: int = 30
    rate_limit_window: str = "minute"

    # LLM Provider (OpenRouter)
    openrouter_api_key: SecretStr | None = None
    llm_model: str = "google/gemini-pro"
    llm_fallback_model: str = "google/gemini-2.0-flash-001"
    llm_timeout_seconds: float = 30.0

    # Embeddings (via OpenRouter)
    embedding_api_key: SecretStr | None = None
    embedding_base_url: str = "https://openrouter.ai/api/v1"
    embedding_model: str = "openai/text-embedding-3-small"
    embedding_timeout_seconds: float = 30.0
    embedding_max_input_chars: int = 2048  # Inputs are truncated before submission

    # Retry policy shared by embedding and LLM collaborators
    retry_max_attempts: int = 3
    retry_backoff_multiplier: float = 1.0
    retry_backoff_max_seconds: float = 5.0

    # Circuit breaker
    circuit_breaker_fail_max: int = 5
    circuit_breaker_timeout: float = 60.0

    # Key-value persistence medium
    kv_backend: Literal["memory", "filesystem"] = "filesystem"
    kv_path: str = "./data/kv"
    kv_capacity_bytes: int | None = 5 * 1024 * 1024  # None = unbounded
    store_key: str = "vectorStore"

    # Retrieval
    rag_top_k: int = 3  # Number of chunks to retrieve
    stats_count_field: str = "wordCount"

    # Ingestion
    chunk_max_words: int = 1000
    ingest_max_concurrency: int = 4  # Parallel embedding calls per ingestion

    # Observability
    tracing_enabled: bool = False
    otlp_endpoint: str | None = None
    tracing_console_export: bool = False


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
