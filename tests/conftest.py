"""Shared test fixtures."""

import os

# Keep the app off the real filesystem and external services during tests;
# must run before src.config settings are first read
os.environ["KV_BACKEND"] = "memory"
os.environ["TRACING_ENABLED"] = "false"
for _key in ("EMBEDDING_API_KEY", "OPENROUTER_API_KEY"):
    os.environ.pop(_key, None)

import pytest  # noqa: E402

from src.infrastructure.retry import RetryPolicy  # noqa: E402


@pytest.fixture
def fast_retry() -> RetryPolicy:
    """Retry policy with no backoff so retry tests do not sleep."""
    return RetryPolicy(max_attempts=2, backoff_multiplier=0, backoff_max_seconds=0)
