"""Exceptions for the RAG module."""


class RAGError(Exception):
    """Base exception for retrieval and answering errors."""


class EmbeddingUnavailableError(RAGError):
    """Raised when a usable query embedding could not be obtained.

    Covers provider failures (timeouts, rate limits, open circuit) as well
    as a provider that answered with an empty or non-finite vector.
    """

    def __init__(self, message: str, *, provider: str | None = None) -> None:
        self.provider = provider
        super().__init__(message)
