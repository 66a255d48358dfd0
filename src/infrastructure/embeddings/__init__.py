"""Embedding backends for chunk ingestion and query retrieval."""

from src.infrastructure.embeddings.exceptions import (
    EmbeddingConfigurationError,
    EmbeddingEmptyResultError,
    EmbeddingProviderError,
    EmbeddingRateLimitError,
    EmbeddingTimeoutError,
)
from src.infrastructure.embeddings.openai import OpenAIEmbeddingProvider
from src.infrastructure.embeddings.protocol import EmbeddingProvider

__all__ = [
    "EmbeddingConfigurationError",
    "EmbeddingEmptyResultError",
    "EmbeddingProvider",
    "EmbeddingProviderError",
    "EmbeddingRateLimitError",
    "EmbeddingTimeoutError",
    "OpenAIEmbeddingProvider",
]
