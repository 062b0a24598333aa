"""
Retry and timeout helpers for the asynchronous entry points.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

from trackmeta.utils.errors import AnalysisError

T = TypeVar('T')

logger = logging.getLogger(__name__)


def default_should_retry(error: BaseException) -> bool:
    """Retry retryable AnalysisErrors and anything we don't recognize."""
    if isinstance(error, AnalysisError):
        return error.retryable
    return True


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    base_delay: float = 1.0,
    should_retry: Callable[[BaseException], bool] = default_should_retry,
    on_retry: Optional[Callable[[int, BaseException], Any]] = None,
) -> T:
    """
    Run an async operation with exponential backoff.

    The delay before attempt ``n + 1`` is ``base_delay * 2 ** (n - 1)``.

    Args:
        operation: Zero-argument callable returning a fresh awaitable
        max_attempts: Total attempts including the first one
        base_delay: Delay in seconds after the first failure
        should_retry: Predicate deciding whether an error is worth retrying
        on_retry: Optional callback invoked with (attempt, error) before sleeping

    Returns:
        The operation's result

    Raises:
        The last error raised by the operation
    """
    attempt = 1
    while True:
        try:
            return await operation()
        except Exception as e:
            if attempt >= max_attempts or not should_retry(e):
                raise

            delay = base_delay * (2 ** (attempt - 1))
            logger.warning(
                f"Attempt {attempt}/{max_attempts} failed, retrying in {delay:.1f}s: {e}"
            )
            if on_retry is not None:
                on_retry(attempt, e)

            await asyncio.sleep(delay)
            attempt += 1


async def with_timeout(
    awaitable: Awaitable[T],
    timeout: float,
    error: Callable[[], BaseException],
) -> T:
    """
    Await with a deadline, raising ``error()`` when it elapses.

    Args:
        awaitable: Coroutine or future to wait for
        timeout: Seconds to wait
        error: Factory for the exception raised on timeout
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError:
        raise error() from None
