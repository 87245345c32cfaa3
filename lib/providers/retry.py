"""Shared retry helper for outbound provider calls."""

import asyncio
from typing import Awaitable, Callable, Optional, TypeVar

from loguru import logger

from lib.providers.errors import ProviderError, classify_http_error

T = TypeVar("T")

DEFAULT_ATTEMPTS = 3
DEFAULT_DELAY = 1.0


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    attempts: int = DEFAULT_ATTEMPTS,
    delay: float = DEFAULT_DELAY,
    classify: Optional[Callable[[BaseException], ProviderError]] = None,
    label: str = "request",
) -> T:
    """Run an async operation with bounded attempts and linear backoff.

    Every failure is passed through `classify`; errors whose kind is not
    retryable are raised immediately, the rest are retried after
    `delay * attempt` seconds. The classified error of the last attempt is
    raised once attempts are exhausted.

    Args:
        operation: Zero-arg coroutine factory, called once per attempt
        attempts: Maximum number of attempts (>= 1)
        delay: Base backoff in seconds
        classify: Maps an exception to a ProviderError (default: classify_http_error)
        label: Name used in log lines
    """
    classify = classify or classify_http_error
    attempts = max(1, attempts)
    last_error: Optional[ProviderError] = None

    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except Exception as e:
            error = classify(e)
            last_error = error
            if not error.retryable:
                raise error from e
            if attempt == attempts:
                raise error from e
            wait = delay * attempt
            logger.debug(f"{label} failed ({error.kind.value}), attempt {attempt}/{attempts}, retrying in {wait:.1f}s")
            await asyncio.sleep(wait)

    # attempts >= 1, loop always returns or raises
    raise last_error
