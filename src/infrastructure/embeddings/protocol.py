"""Interface used by ingestion and retrieval to vectorize text."""

from typing import Protocol


class EmbeddingProvider(Protocol):
    """Text-to-vector backend.

    Ingestion embeds chunks in batches; retrieval embeds one query at a time.
    Both compare the results with cosine similarity, so every vector from one
    provider must have the same length.
    """

    async def embed(self, text: str) -> list[float]:
        """Vectorize a single query or chunk.

        Raises:
            EmbeddingProviderError: Or a subclass, when no usable vector
                can be produced.
        """
        ...

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Vectorize several texts, returning vectors in input order.

        Raises:
            EmbeddingProviderError: If any text in the batch fails.
        """
        ...

    @property
    def dimensions(self) -> int:
        """Length of every vector this provider returns."""
        ...
