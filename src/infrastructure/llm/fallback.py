"""Second-chance answer generation on a fallback model."""

import structlog

from src.infrastructure.llm.exceptions import LLMProviderError
from src.infrastructure.llm.protocol import LLMProvider

logger = structlog.get_logger()


class FallbackLLMProvider:
    """Wraps a provider and retries a failed answer once on another model.

    The fallback is usually a smaller, cheaper model that stays available
    when the primary one is overloaded. If both fail, the caller sees the
    primary error since that is the model it asked for.
    """

    def __init__(self, primary_provider: LLMProvider, *, fallback_model: str) -> None:
        self._provider = primary_provider
        self._fallback_model = fallback_model

    async def complete(
        self,
        messages: list[dict[str, str]],
        system_prompt: str,
        *,
        model: str | None = None,
    ) -> str:
        try:
            return await self._provider.complete(messages, system_prompt, model=model)
        except LLMProviderError as primary_error:
            first_failure = primary_error

        logger.warning(
            "llm_primary_failed_trying_fallback",
            primary_error=str(first_failure),
            fallback_model=self._fallback_model,
        )
        try:
            answer = await self._provider.complete(
                messages, system_prompt, model=self._fallback_model
            )
        except LLMProviderError as fallback_error:
            logger.error(
                "llm_fallback_also_failed",
                primary_error=str(first_failure),
                fallback_error=str(fallback_error),
                fallback_model=self._fallback_model,
            )
            raise first_failure from fallback_error

        logger.info("llm_fallback_success", fallback_model=self._fallback_model)
        return answer
