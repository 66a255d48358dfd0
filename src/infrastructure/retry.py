"""Retry policy shared by external collaborators."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = structlog.get_logger()

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry with exponential backoff.

    Injected into providers so the retry budget is explicit and testable
    instead of living in hidden recursion.
    """

    max_attempts: int = 3
    backoff_multiplier: float = 1.0
    backoff_max_seconds: float = 5.0
    retry_on: tuple[type[BaseException], ...] = field(default=(Exception,))

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    def with_retry_on(
        self, *exception_types: type[BaseException]
    ) -> "RetryPolicy":
        """Return a copy of this policy retrying only the given exception types."""
        return RetryPolicy(
            max_attempts=self.max_attempts,
            backoff_multiplier=self.backoff_multiplier,
            backoff_max_seconds=self.backoff_max_seconds,
            retry_on=exception_types,
        )

    def _retrying(self, operation: str) -> AsyncRetrying:
        def _log_retry(state: RetryCallState) -> None:
            outcome = state.outcome
            logger.warning(
                "retry_attempt_failed",
                operation=operation,
                attempt=state.attempt_number,
                max_attempts=self.max_attempts,
                error=str(outcome.exception()) if outcome else None,
            )

        return AsyncRetrying(
            retry=retry_if_exception_type(self.retry_on),
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(
                multiplier=self.backoff_multiplier, max=self.backoff_max_seconds
            ),
            before_sleep=_log_retry,
            reraise=True,
        )

    async def run(
        self,
        operation: str,
        func: Callable[..., Awaitable[T]],
        *args: object,
    ) -> T:
        """Run an async callable under this policy.

        Args:
            operation: Name used in retry log events.
            func: Coroutine function to call.
            *args: Positional arguments for func.

        Returns:
            The callable's result.

        Raises:
            The last exception once attempts are exhausted.
        """
        async for attempt in self._retrying(operation):
            with attempt:
                return await func(*args)
        raise AssertionError("unreachable")  # pragma: no cover


NO_RETRY = RetryPolicy(max_attempts=1)
