"""
pytest configuration and fixtures.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable

import pytest
from tenacity import wait_none

from reliable_httpstream.types.retry_policy import RetryPolicy


@pytest.fixture
def run() -> Callable[[Awaitable[Any]], Any]:
    """Run a coroutine on a fresh event loop and return its result."""

    def _run(coro: Awaitable[Any]) -> Any:
        return asyncio.run(coro)

    return _run


@pytest.fixture
def fast_retry() -> RetryPolicy:
    """Three attempts with millisecond backoff."""
    return RetryPolicy(max_attempts=3, min_delay=0.001, max_delay=0.005)


@pytest.fixture
def no_wait():
    """tenacity wait strategy that never sleeps."""
    return wait_none()


@pytest.fixture(autouse=True)
def debug_logging(caplog: pytest.LogCaptureFixture):
    caplog.set_level(logging.DEBUG, logger="reliable_httpstream")
