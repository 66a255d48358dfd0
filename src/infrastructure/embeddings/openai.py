"""Embeddings through an OpenAI-compatible API (OpenRouter by default)."""

import math
from datetime import timedelta
from typing import ClassVar

import structlog
from aiobreaker import CircuitBreaker, CircuitBreakerError
from openai import APIConnectionError, APITimeoutError, AsyncOpenAI, RateLimitError

from src.infrastructure.embeddings.exceptions import (
    EmbeddingConfigurationError,
    EmbeddingEmptyResultError,
    EmbeddingProviderError,
    EmbeddingRateLimitError,
    EmbeddingTimeoutError,
)
from src.infrastructure.observability import get_tracer
from src.infrastructure.retry import RetryPolicy

logger = structlog.get_logger()
tracer = get_tracer(__name__)


def _usable(vector: list[float]) -> bool:
    return bool(vector) and all(math.isfinite(v) for v in vector)


class OpenAIEmbeddingProvider:
    """Vectorizes chunk and query text.

    Input longer than ``max_input_chars`` is cut before sending. Connection
    drops and timeouts are retried under a RetryPolicy, and each attempt goes
    through a circuit breaker. A response is only accepted when it holds one
    finite, non-empty vector per input.
    """

    PROVIDER_NAME = "openai"

    MODEL_DIMENSIONS: ClassVar[dict[str, int]] = {
        "openai/text-embedding-3-small": 1536,
        "openai/text-embedding-3-large": 3072,
        "openai/text-embedding-ada-002": 1536,
    }
    DEFAULT_DIMENSIONS = 1536

    def __init__(
        self,
        api_key: str,
        *,
        model: str = "openai/text-embedding-3-small",
        base_url: str = "https://openrouter.ai/api/v1",
        timeout_seconds: float = 30.0,
        max_input_chars: int = 2048,
        retry_policy: RetryPolicy | None = None,
        circuit_breaker_fail_max: int = 5,
        circuit_breaker_timeout: float = 60.0,
    ) -> None:
        """Create the provider.

        Args:
            api_key: Key for the embeddings endpoint.
            model: Embedding model identifier.
            base_url: OpenAI-compatible endpoint.
            timeout_seconds: Per-request timeout.
            max_input_chars: Longer inputs are truncated to this many characters.
            retry_policy: Attempts and backoff for transport failures.
            circuit_breaker_fail_max: Failures before the breaker opens.
            circuit_breaker_timeout: Seconds the breaker stays open.

        Raises:
            EmbeddingConfigurationError: If ``api_key`` is empty.
        """
        if not api_key:
            raise EmbeddingConfigurationError(
                "API key is required", provider=self.PROVIDER_NAME
            )

        self._client = AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            timeout=timeout_seconds,
        )
        self._model = model
        self._timeout = timeout_seconds
        self._max_input_chars = max_input_chars
        self._retry = (retry_policy or RetryPolicy(max_attempts=2)).with_retry_on(
            APIConnectionError, APITimeoutError
        )
        self._breaker = CircuitBreaker(
            fail_max=circuit_breaker_fail_max,
            timeout_duration=timedelta(seconds=circuit_breaker_timeout),
        )

    @property
    def dimensions(self) -> int:
        return self.MODEL_DIMENSIONS.get(self._model, self.DEFAULT_DIMENSIONS)

    async def embed(self, text: str) -> list[float]:
        """Vectorize one text.

        Raises:
            EmbeddingTimeoutError: If every attempt timed out.
            EmbeddingRateLimitError: If the backend rate limited us.
            EmbeddingEmptyResultError: If no usable vector came back.
            EmbeddingProviderError: For connection failures, an open
                breaker, or anything unexpected.
        """
        vectors = await self._embed_traced([text], span_name="embeddings.embed")
        return vectors[0]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Vectorize ``texts`` in one request, preserving input order.

        An empty batch returns immediately without calling the API.
        """
        if not texts:
            return []
        return await self._embed_traced(texts, span_name="embeddings.embed_batch")

    async def _embed_traced(
        self, texts: list[str], *, span_name: str
    ) -> list[list[float]]:
        inputs = [text[: self._max_input_chars] for text in texts]

        with tracer.start_as_current_span(span_name) as span:
            span.set_attribute("embeddings.provider", self.PROVIDER_NAME)
            span.set_attribute("embeddings.model", self._model)
            span.set_attribute("embeddings.batch_size", len(inputs))
            span.set_attribute("embeddings.input_length", sum(len(t) for t in inputs))
            try:
                vectors = await self._retry.run(
                    span_name, self._breaker.call_async, self._request, inputs
                )
            except (CircuitBreakerError, APITimeoutError, APIConnectionError) as e:
                span.record_exception(e)
                raise self._translate(e, batch_size=len(inputs)) from e

            span.set_attribute("embeddings.dimensions", len(vectors[0]))
            return vectors

    def _translate(self, error: Exception, *, batch_size: int) -> EmbeddingProviderError:
        """Map a failure that survived retries onto the provider's errors."""
        if isinstance(error, CircuitBreakerError):
            logger.warning(
                "circuit_breaker_open", provider=self.PROVIDER_NAME, model=self._model
            )
            return EmbeddingProviderError(
                "Service temporarily unavailable. Please try again in a moment.",
                provider=self.PROVIDER_NAME,
            )
        if isinstance(error, APITimeoutError):
            logger.warning(
                "embedding_timeout",
                provider=self.PROVIDER_NAME,
                model=self._model,
                timeout_seconds=self._timeout,
                batch_size=batch_size,
            )
            return EmbeddingTimeoutError(
                f"Request timed out after {self._timeout}s",
                provider=self.PROVIDER_NAME,
            )
        logger.error(
            "embedding_connection_error",
            provider=self.PROVIDER_NAME,
            model=self._model,
            error=str(error),
        )
        return EmbeddingProviderError(
            "Unable to connect to embedding service", provider=self.PROVIDER_NAME
        )

    async def _request(self, inputs: list[str]) -> list[list[float]]:
        """Send one embeddings request and validate the vectors.

        Connection and timeout errors propagate untouched so the retry
        policy sees them.
        """
        logger.debug(
            "embedding_request_start",
            provider=self.PROVIDER_NAME,
            model=self._model,
            batch_size=len(inputs),
        )
        try:
            response = await self._client.embeddings.create(
                model=self._model, input=inputs
            )
        except (APIConnectionError, APITimeoutError):
            raise
        except RateLimitError as e:
            logger.warning(
                "embedding_rate_limited", provider=self.PROVIDER_NAME, model=self._model
            )
            raise EmbeddingRateLimitError(
                "Rate limited by embedding service. Please try again shortly.",
                provider=self.PROVIDER_NAME,
            ) from e
        except Exception as e:
            logger.error(
                "embedding_unexpected_error",
                provider=self.PROVIDER_NAME,
                model=self._model,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise EmbeddingProviderError(
                "An unexpected error occurred", provider=self.PROVIDER_NAME
            ) from e

        # The API may return items out of order; index restores input order
        items = sorted(response.data or [], key=lambda item: item.index)
        vectors = [list(item.embedding) for item in items]

        if len(vectors) != len(inputs) or not all(_usable(v) for v in vectors):
            logger.warning(
                "embedding_empty_result",
                provider=self.PROVIDER_NAME,
                model=self._model,
                expected=len(inputs),
                received=len(vectors),
            )
            raise EmbeddingEmptyResultError(
                "No usable embeddings returned from API", provider=self.PROVIDER_NAME
            )

        logger.debug(
            "embedding_request_success",
            provider=self.PROVIDER_NAME,
            model=self._model,
            batch_size=len(inputs),
            dimensions=len(vectors[0]),
        )
        return vectors
