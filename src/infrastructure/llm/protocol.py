"""Interface the RAG service uses to turn a grounded prompt into an answer."""

from typing import Protocol


class LLMProvider(Protocol):
    """Chat-completion backend used for answer generation.

    The RAG service only needs one call: send an ordered conversation under a
    system prompt that already embeds the retrieved chunks, get text back.
    """

    async def complete(
        self,
        messages: list[dict[str, str]],
        system_prompt: str,
        *,
        model: str | None = None,
    ) -> str:
        """Answer the last user turn of ``messages``.

        Args:
            messages: Prior turns followed by the current question, each a
                ``{"role": "user" | "assistant", "content": str}`` mapping.
            system_prompt: Instructions plus the retrieved context block.
            model: Model identifier; the provider default when omitted.

        Returns:
            The answer text, possibly empty.

        Raises:
            LLMProviderError: On any failure. Subclasses distinguish timeouts,
                rate limits, context overflow and an open circuit.
        """
        ...
