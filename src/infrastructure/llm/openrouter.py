"""Answer generation through OpenRouter's OpenAI-compatible chat API."""

from datetime import timedelta

import structlog
from aiobreaker import CircuitBreaker, CircuitBreakerError
from openai import APIConnectionError, APITimeoutError, AsyncOpenAI, RateLimitError

from src.infrastructure.llm.exceptions import (
    LLMConfigurationError,
    LLMContextOverflowError,
    LLMProviderError,
    LLMRateLimitError,
    LLMTimeoutError,
    LLMUnavailableError,
)
from src.infrastructure.observability import get_tracer
from src.infrastructure.retry import RetryPolicy

logger = structlog.get_logger()
tracer = get_tracer(__name__)

_CONTEXT_MARKERS = ("context length", "context_length", "context window", "context limit")


def build_chat_messages(
    system_prompt: str, messages: list[dict[str, str]]
) -> list[dict[str, str]]:
    """Put the system prompt first and drop any system turns from history."""
    chat = [{"role": "system", "content": system_prompt}]
    chat.extend(
        {"role": m["role"], "content": m.get("content", "")}
        for m in messages
        if m.get("role") != "system"
    )
    return chat


def _is_context_overflow(error: Exception) -> bool:
    text = str(error).lower()
    return any(marker in text for marker in _CONTEXT_MARKERS)


class OpenRouterProvider:
    """Chat completions for grounded answers.

    Transient transport failures (connection drops, timeouts) are retried
    under a RetryPolicy. Every attempt runs through a circuit breaker so a
    dead backend is reported as unavailable instead of hammered.
    """

    PROVIDER_NAME = "openrouter"
    BASE_URL = "https://openrouter.ai/api/v1"

    def __init__(
        self,
        api_key: str,
        *,
        default_model: str = "google/gemini-pro",
        timeout_seconds: float = 30.0,
        temperature: float = 0.7,
        retry_policy: RetryPolicy | None = None,
        circuit_breaker_fail_max: int = 5,
        circuit_breaker_timeout: float = 60.0,
        base_url: str | None = None,
    ) -> None:
        """Create the provider.

        Args:
            api_key: OpenRouter API key.
            default_model: Model used when a call does not name one.
            timeout_seconds: Per-request timeout.
            temperature: Sampling temperature for answers.
            retry_policy: Attempts and backoff for transport failures.
            circuit_breaker_fail_max: Failures before the breaker opens.
            circuit_breaker_timeout: Seconds the breaker stays open.
            base_url: Alternative OpenAI-compatible endpoint.

        Raises:
            LLMConfigurationError: If ``api_key`` is empty.
        """
        if not api_key:
            raise LLMConfigurationError(
                "OpenRouter API key is required", provider=self.PROVIDER_NAME
            )

        self._client = AsyncOpenAI(
            base_url=base_url or self.BASE_URL,
            api_key=api_key,
            timeout=timeout_seconds,
        )
        self._default_model = default_model
        self._timeout = timeout_seconds
        self._temperature = temperature
        self._retry = (retry_policy or RetryPolicy(max_attempts=2)).with_retry_on(
            APIConnectionError, APITimeoutError
        )
        self._breaker = CircuitBreaker(
            fail_max=circuit_breaker_fail_max,
            timeout_duration=timedelta(seconds=circuit_breaker_timeout),
        )

    async def complete(
        self,
        messages: list[dict[str, str]],
        system_prompt: str,
        *,
        model: str | None = None,
    ) -> str:
        """Answer the conversation under ``system_prompt``.

        Raises:
            LLMUnavailableError: If the circuit breaker is open.
            LLMTimeoutError: If every attempt timed out.
            LLMRateLimitError: If the backend rate limited us.
            LLMContextOverflowError: If the prompt is too long for the model.
            LLMProviderError: For connection failures and anything unexpected.
        """
        model = model or self._default_model
        chat = build_chat_messages(system_prompt, messages)

        with tracer.start_as_current_span("llm.complete") as span:
            span.set_attribute("llm.provider", self.PROVIDER_NAME)
            span.set_attribute("llm.model", model)
            span.set_attribute("llm.message_count", len(chat))
            span.set_attribute(
                "llm.input_length", sum(len(m["content"]) for m in chat)
            )
            try:
                answer: str = await self._retry.run(
                    "llm.complete",
                    self._breaker.call_async,
                    self._request,
                    chat,
                    model,
                )
            except (CircuitBreakerError, APITimeoutError, APIConnectionError) as e:
                span.record_exception(e)
                raise self._translate(e, model) from e

            span.set_attribute("llm.output_length", len(answer))
            return answer

    def _translate(self, error: Exception, model: str) -> LLMProviderError:
        """Map a failure that survived retries onto the provider's errors."""
        if isinstance(error, CircuitBreakerError):
            logger.warning("circuit_breaker_open", provider=self.PROVIDER_NAME, model=model)
            return LLMUnavailableError(
                "Service temporarily unavailable. Please try again in a moment.",
                provider=self.PROVIDER_NAME,
                model=model,
            )
        if isinstance(error, APITimeoutError):
            logger.warning(
                "llm_timeout",
                provider=self.PROVIDER_NAME,
                model=model,
                timeout_seconds=self._timeout,
            )
            return LLMTimeoutError(
                f"Request timed out after {self._timeout}s",
                provider=self.PROVIDER_NAME,
                model=model,
            )
        logger.error(
            "llm_connection_error", provider=self.PROVIDER_NAME, model=model, error=str(error)
        )
        return LLMProviderError(
            "Unable to connect to LLM service", provider=self.PROVIDER_NAME, model=model
        )

    async def _request(self, chat: list[dict[str, str]], model: str) -> str:
        """Send one chat request.

        Connection and timeout errors propagate untouched so the retry
        policy sees them; everything else becomes an LLMProviderError here.
        """
        logger.debug(
            "llm_request_start",
            provider=self.PROVIDER_NAME,
            model=model,
            message_count=len(chat),
        )
        try:
            response = await self._client.chat.completions.create(
                model=model,
                messages=chat,  # type: ignore[arg-type]
                temperature=self._temperature,
            )
        except (APIConnectionError, APITimeoutError):
            raise
        except RateLimitError as e:
            logger.warning("llm_rate_limited", provider=self.PROVIDER_NAME, model=model)
            raise LLMRateLimitError(
                "Rate limited by OpenRouter. Please try again shortly.",
                provider=self.PROVIDER_NAME,
                model=model,
            ) from e
        except Exception as e:
            if _is_context_overflow(e):
                logger.warning(
                    "llm_context_overflow",
                    provider=self.PROVIDER_NAME,
                    model=model,
                    message_count=len(chat),
                )
                raise LLMContextOverflowError(
                    "Conversation is too long. Please start a new chat.",
                    provider=self.PROVIDER_NAME,
                    model=model,
                ) from e
            logger.error(
                "llm_unexpected_error",
                provider=self.PROVIDER_NAME,
                model=model,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise LLMProviderError(
                "An unexpected error occurred", provider=self.PROVIDER_NAME, model=model
            ) from e

        answer = response.choices[0].message.content or ""
        logger.debug(
            "llm_request_success",
            provider=self.PROVIDER_NAME,
            model=model,
            response_length=len(answer),
        )
        return answer
