"""FastAPI dependency providers.

Stateful collaborators (the store, the medium, the providers with their
circuit breakers) are process singletons cached per configuration so every
request shares them.
"""

from pathlib import Path
from typing import Annotated

import structlog
from fastapi import Depends

from src.config import Settings, get_settings
from src.infrastructure.embeddings import OpenAIEmbeddingProvider
from src.infrastructure.kvstore import (
    FileKeyValueStore,
    InMemoryKeyValueStore,
    KeyValueStore,
)
from src.infrastructure.llm import FallbackLLMProvider, LLMProvider, OpenRouterProvider
from src.infrastructure.retry import RetryPolicy
from src.modules.ingestion import ChunkingConfig, IngestionService
from src.modules.rag import RAGService, RetrievalOrchestrator
from src.modules.vectorstore import PersistenceAdapter, VectorStore

logger = structlog.get_logger()

# Singletons (per process)
_kv_instances: dict[str, KeyValueStore] = {}
_store_instances: dict[str, VectorStore] = {}
_embedding_instances: dict[str, OpenAIEmbeddingProvider] = {}
_llm_instances: dict[str, LLMProvider] = {}


def reset_singletons() -> None:
    """Drop cached collaborators (tests and reconfiguration)."""
    _kv_instances.clear()
    _store_instances.clear()
    _embedding_instances.clear()
    _llm_instances.clear()


def build_retry_policy(settings: Settings) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=settings.retry_max_attempts,
        backoff_multiplier=settings.retry_backoff_multiplier,
        backoff_max_seconds=settings.retry_backoff_max_seconds,
    )


def get_kv_store(
    settings: Annotated[Settings, Depends(get_settings)],
) -> KeyValueStore:
    """Get or create the persistence medium selected by kv_backend."""
    cache_key = f"{settings.kv_backend}:{settings.kv_path}"
    if cache_key not in _kv_instances:
        if settings.kv_backend == "memory":
            _kv_instances[cache_key] = InMemoryKeyValueStore(
                capacity_bytes=settings.kv_capacity_bytes
            )
        else:
            _kv_instances[cache_key] = FileKeyValueStore(
                Path(settings.kv_path),
                capacity_bytes=settings.kv_capacity_bytes,
            )
        logger.info(
            "kv_store_created",
            backend=settings.kv_backend,
            path=settings.kv_path,
            capacity_bytes=settings.kv_capacity_bytes,
        )
    return _kv_instances[cache_key]


def get_persistence_adapter(
    settings: Annotated[Settings, Depends(get_settings)],
    kv: Annotated[KeyValueStore, Depends(get_kv_store)],
) -> PersistenceAdapter:
    return PersistenceAdapter(kv, key=settings.store_key)


def get_vector_store(
    settings: Annotated[Settings, Depends(get_settings)],
) -> VectorStore:
    """Get or create the vector store singleton for the configured key."""
    if settings.store_key not in _store_instances:
        _store_instances[settings.store_key] = VectorStore()
    return _store_instances[settings.store_key]


def get_embedding_provider(
    settings: Annotated[Settings, Depends(get_settings)],
) -> OpenAIEmbeddingProvider | None:
    """Get the embedding provider if configured, None otherwise."""
    if settings.embedding_api_key is None:
        return None

    if settings.embedding_model not in _embedding_instances:
        _embedding_instances[settings.embedding_model] = OpenAIEmbeddingProvider(
            api_key=settings.embedding_api_key.get_secret_value(),
            model=settings.embedding_model,
            base_url=settings.embedding_base_url,
            timeout_seconds=settings.embedding_timeout_seconds,
            max_input_chars=settings.embedding_max_input_chars,
            retry_policy=build_retry_policy(settings),
            circuit_breaker_fail_max=settings.circuit_breaker_fail_max,
            circuit_breaker_timeout=settings.circuit_breaker_timeout,
        )
    return _embedding_instances[settings.embedding_model]


def get_llm_provider(
    settings: Annotated[Settings, Depends(get_settings)],
) -> LLMProvider | None:
    """Get the LLM provider if configured, None otherwise.

    Wrapped in FallbackLLMProvider when a fallback model is set.
    """
    if settings.openrouter_api_key is None:
        return None

    if settings.llm_model not in _llm_instances:
        provider: LLMProvider = OpenRouterProvider(
            api_key=settings.openrouter_api_key.get_secret_value(),
            default_model=settings.llm_model,
            timeout_seconds=settings.llm_timeout_seconds,
            retry_policy=build_retry_policy(settings),
            circuit_breaker_fail_max=settings.circuit_breaker_fail_max,
            circuit_breaker_timeout=settings.circuit_breaker_timeout,
        )
        if settings.llm_fallback_model:
            provider = FallbackLLMProvider(
                provider, fallback_model=settings.llm_fallback_model
            )
        _llm_instances[settings.llm_model] = provider
    return _llm_instances[settings.llm_model]


def get_retriever(
    settings: Annotated[Settings, Depends(get_settings)],
    embedding_provider: Annotated[
        OpenAIEmbeddingProvider | None, Depends(get_embedding_provider)
    ],
    store: Annotated[VectorStore, Depends(get_vector_store)],
) -> RetrievalOrchestrator | None:
    """Get the retrieval orchestrator; None without an embedding provider."""
    if embedding_provider is None:
        return None
    return RetrievalOrchestrator(
        embedding_provider, store, default_top_k=settings.rag_top_k
    )


def get_rag_service(
    settings: Annotated[Settings, Depends(get_settings)],
    llm_provider: Annotated[LLMProvider | None, Depends(get_llm_provider)],
    retriever: Annotated[RetrievalOrchestrator | None, Depends(get_retriever)],
    store: Annotated[VectorStore, Depends(get_vector_store)],
) -> RAGService | None:
    """Get the RAG service if fully configured.

    Returns None if LLM or embeddings are not configured.
    """
    if llm_provider is None or retriever is None:
        return None
    return RAGService(llm_provider, retriever, store, top_k=settings.rag_top_k)


def get_ingestion_service(
    settings: Annotated[Settings, Depends(get_settings)],
    embedding_provider: Annotated[
        OpenAIEmbeddingProvider | None, Depends(get_embedding_provider)
    ],
    store: Annotated[VectorStore, Depends(get_vector_store)],
    adapter: Annotated[PersistenceAdapter, Depends(get_persistence_adapter)],
) -> IngestionService | None:
    """Get the ingestion service; None without an embedding provider."""
    if embedding_provider is None:
        return None
    return IngestionService(
        embedding_provider,
        store,
        adapter=adapter,
        chunking_config=ChunkingConfig(max_words=settings.chunk_max_words),
        max_concurrency=settings.ingest_max_concurrency,
    )
