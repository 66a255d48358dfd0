"""Errors raised while generating answers over retrieved chunks."""


class LLMProviderError(Exception):
    """Answer generation failed.

    Attributes:
        provider: Backend that produced the failure.
        model: Model the failing request targeted, when known.
    """

    def __init__(
        self, message: str, *, provider: str = "unknown", model: str | None = None
    ) -> None:
        self.provider = provider
        self.model = model
        super().__init__(message)


class LLMConfigurationError(LLMProviderError):
    """The provider cannot be constructed, typically a missing API key."""


class LLMTimeoutError(LLMProviderError):
    """No answer arrived within the request timeout."""


class LLMRateLimitError(LLMProviderError):
    """The backend rejected the request for exceeding its rate limit."""


class LLMContextOverflowError(LLMProviderError):
    """Question, history and context chunks exceed the model's window."""


class LLMUnavailableError(LLMProviderError):
    """The circuit breaker is open and calls are refused until it resets."""
