"""Retrieval orchestrator: embed a query and rank the store against it."""

import math

import structlog

from src.infrastructure.embeddings import EmbeddingProvider, EmbeddingProviderError
from src.infrastructure.observability import get_tracer
from src.modules.rag.exceptions import EmbeddingUnavailableError
from src.modules.rag.schemas import RetrievedChunk
from src.modules.vectorstore import VectorStore
from src.modules.vectorstore.similarity import DEFAULT_TOP_K

logger = structlog.get_logger()
tracer = get_tracer(__name__)

UNKNOWN_SOURCE = "Unknown"


class RetrievalOrchestrator:
    """Turns a query string into ranked grounding chunks.

    The embedding collaborator is the only I/O. Its failures surface as
    EmbeddingUnavailableError so callers can tell "the service is down"
    apart from "nothing matched" (an empty list).
    """

    def __init__(
        self,
        embedding_provider: EmbeddingProvider,
        store: VectorStore,
        *,
        default_top_k: int = DEFAULT_TOP_K,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            embedding_provider: Provider for query embeddings.
            store: Store to rank against.
            default_top_k: Result count when retrieve() is called without one.
        """
        self._embeddings = embedding_provider
        self._store = store
        self._default_top_k = default_top_k

    async def embed_query(self, query_text: str) -> list[float]:
        """Embed a query, rejecting empty or non-finite vectors.

        Raises:
            EmbeddingUnavailableError: If no usable vector was obtained.
        """
        try:
            embedding = await self._embeddings.embed(query_text)
        except EmbeddingProviderError as e:
            logger.warning(
                "retrieval_embedding_failed",
                provider=e.provider,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise EmbeddingUnavailableError(str(e), provider=e.provider) from e

        if not embedding:
            logger.warning("retrieval_embedding_empty")
            raise EmbeddingUnavailableError("Embedding service returned no vector")
        if not all(math.isfinite(x) for x in embedding):
            logger.warning("retrieval_embedding_non_finite", dimensions=len(embedding))
            raise EmbeddingUnavailableError(
                "Embedding service returned non-finite values"
            )
        return embedding

    async def retrieve(
        self, query_text: str, top_k: int | None = None
    ) -> list[RetrievedChunk]:
        """Return up to top_k chunks most similar to query_text.

        Args:
            query_text: Natural-language query.
            top_k: Maximum number of chunks; defaults to the configured value.

        Returns:
            Chunks ordered by similarity, best first. Empty when the store
            holds nothing comparable.

        Raises:
            ValueError: If query_text is blank.
            EmbeddingUnavailableError: If the query could not be embedded.
        """
        if not query_text or not query_text.strip():
            raise ValueError("Query text must not be empty")

        k = self._default_top_k if top_k is None else top_k

        with tracer.start_as_current_span("retrieval.retrieve") as span:
            span.set_attribute("retrieval.query_length", len(query_text))
            span.set_attribute("retrieval.top_k", k)

            embedding = await self.embed_query(query_text)
            span.set_attribute("retrieval.query_dimensions", len(embedding))

            ranked = self._store.rank(embedding, k)
            chunks = [
                RetrievedChunk(
                    text=item.record.text,
                    source=item.record.source_file or UNKNOWN_SOURCE,
                    similarity_score=item.score,
                    metadata=dict(item.record.metadata),
                )
                for item in ranked
            ]

            span.set_attribute("retrieval.results_count", len(chunks))
            logger.info(
                "retrieval_completed",
                query_length=len(query_text),
                top_k=k,
                results=len(chunks),
                top_score=chunks[0].similarity_score if chunks else 0.0,
            )
            return chunks
