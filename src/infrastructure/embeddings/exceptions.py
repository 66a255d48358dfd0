"""Errors raised while turning chunk or query text into vectors."""


class EmbeddingProviderError(Exception):
    """No vector could be produced; ``provider`` names the backend."""

    def __init__(self, message: str, *, provider: str = "unknown") -> None:
        self.provider = provider
        super().__init__(message)


class EmbeddingTimeoutError(EmbeddingProviderError):
    """Every attempt ran past the request timeout."""


class EmbeddingRateLimitError(EmbeddingProviderError):
    """The backend refused the batch for exceeding its rate limit."""


class EmbeddingConfigurationError(EmbeddingProviderError):
    """The provider cannot be constructed, typically a missing API key."""


class EmbeddingEmptyResultError(EmbeddingProviderError):
    """The backend answered, but a vector was missing, empty or non-finite."""
