"""
Retry Backoff
=============
Exponential backoff retry implementation.
"""

import asyncio
import random
from typing import Awaitable, Callable, Optional, Set, Type, TypeVar

import structlog

from .exceptions import RetryExhausted

logger = structlog.get_logger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


def compute_backoff(
    attempt: int,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
) -> float:
    """
    Delay before retrying after the given (1-based) failed attempt.

    With jitter the delay is scaled by a random factor in [0.5, 1.5).
    """
    delay = min(base_delay * (exponential_base ** (attempt - 1)), max_delay)
    if jitter:
        delay = delay * (0.5 + random.random())
    return delay


async def retry_with_backoff(
    func: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
    retryable_exceptions: Optional[Set[Type[Exception]]] = None,
    sleep: Sleep = asyncio.sleep,
) -> T:
    """
    Execute a coroutine function with exponential backoff retry.

    Only exceptions in ``retryable_exceptions`` are retried; anything else
    propagates immediately.

    Args:
        func: Zero-argument async function to execute
        max_attempts: Maximum number of attempts
        base_delay: Initial delay in seconds
        max_delay: Maximum delay in seconds
        exponential_base: Base for exponential calculation
        jitter: Add random jitter to delays
        retryable_exceptions: Exception types to retry on
        sleep: Awaitable used to wait between attempts

    Returns:
        Result of func

    Raises:
        RetryExhausted: If every attempt failed with a retryable exception
    """
    retryable = tuple(retryable_exceptions or {Exception})
    name = getattr(func, "__name__", repr(func))

    for attempt in range(1, max_attempts + 1):
        try:
            return await func()
        except retryable as e:
            if attempt == max_attempts:
                logger.error(
                    "retry_exhausted",
                    func=name,
                    attempts=attempt,
                    error=str(e),
                )
                raise RetryExhausted(
                    f"Failed after {max_attempts} attempts: {e}",
                    attempts=attempt,
                    last_exception=e,
                ) from e

            delay = compute_backoff(
                attempt, base_delay, max_delay, exponential_base, jitter
            )
            logger.warning(
                "retrying_after_failure",
                func=name,
                attempt=attempt,
                delay=round(delay, 3),
                error=str(e),
            )
            await sleep(delay)

    raise RetryExhausted(f"Failed after {max_attempts} attempts", attempts=max_attempts)
