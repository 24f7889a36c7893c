"""Timeout and retry policy for external calls.

Both suspending external calls of the pipeline (expression generation and
the zero-row engine probe) go through ``call_with_retry``. Each attempt is
bounded by a timeout; only exceptions the caller classifies as transient are
retried, with exponential backoff plus jitter. Anything else propagates on
the first occurrence.
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from typing import TypeVar

from calcfields.core.logging import get_logger, increment_transient_retry

logger = get_logger(__name__)

T = TypeVar("T")


def backoff_delay(attempt: int, base_delay: float) -> float:
    """Delay before retry number ``attempt + 1``."""
    return base_delay * (2**attempt) + random.random() * base_delay


async def call_with_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    operation: str,
    timeout: float,
    max_retries: int,
    base_delay: float,
    transient: tuple[type[BaseException], ...] = (),
) -> T:
    """Await ``fn()`` with a per-attempt timeout, retrying transient failures.

    A timeout counts as transient. ``fn`` is called anew for every attempt.

    Args:
        fn: Zero-argument coroutine factory
        operation: Name used in log events
        timeout: Seconds allowed per attempt
        max_retries: Retries after the first attempt
        base_delay: Base of the exponential backoff
        transient: Exception types worth retrying

    Raises:
        TimeoutError: If the last attempt timed out
        Exception: The last transient exception, or the first non-transient one
    """
    retryable = (TimeoutError, *transient)
    for attempt in range(max_retries + 1):
        try:
            return await asyncio.wait_for(fn(), timeout=timeout)
        except retryable as e:
            if attempt == max_retries:
                logger.warning(
                    "transient_failure_giving_up",
                    operation=operation,
                    attempts=attempt + 1,
                    error_type=type(e).__name__,
                )
                raise
            wait = backoff_delay(attempt, base_delay)
            logger.info(
                "transient_failure_retrying",
                operation=operation,
                attempt=attempt + 1,
                max_attempts=max_retries + 1,
                error_type=type(e).__name__,
                error=str(e),
                wait_seconds=round(wait, 2),
            )
            increment_transient_retry()
            await asyncio.sleep(wait)

    raise AssertionError("unreachable")
