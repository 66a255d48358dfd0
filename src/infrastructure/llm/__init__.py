"""Answer generation backends.

``OpenRouterProvider`` talks to any OpenAI-compatible chat endpoint and
``FallbackLLMProvider`` retries a failed answer on a second model.
"""

from src.infrastructure.llm.exceptions import (
    LLMConfigurationError,
    LLMContextOverflowError,
    LLMProviderError,
    LLMRateLimitError,
    LLMTimeoutError,
    LLMUnavailableError,
)
from src.infrastructure.llm.fallback import FallbackLLMProvider
from src.infrastructure.llm.openrouter import OpenRouterProvider, build_chat_messages
from src.infrastructure.llm.protocol import LLMProvider

__all__ = [
    "FallbackLLMProvider",
    "LLMConfigurationError",
    "LLMContextOverflowError",
    "LLMProvider",
    "LLMProviderError",
    "LLMRateLimitError",
    "LLMTimeoutError",
    "LLMUnavailableError",
    "OpenRouterProvider",
    "build_chat_messages",
]
