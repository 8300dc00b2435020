"""Retry utilities for collaborator calls.

Provides exponential backoff for transient network failures inside a single
collaborator call. Retrying a whole session effect is not done here: that is
the scheduler's job, on its next evaluation.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

DEFAULT_ATTEMPTS = 2
DEFAULT_BASE_DELAY = 0.2  # seconds
DEFAULT_MAX_DELAY = 2.0  # seconds


def _calculate_delay(
    attempt: int,
    base_delay: float = DEFAULT_BASE_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
) -> float:
    """Exponential backoff delay for a zero-indexed attempt, capped at max_delay."""
    return min(base_delay * (2**attempt), max_delay)


async def with_retry[T](
    fn: Callable[[], Awaitable[T]],
    attempts: int = DEFAULT_ATTEMPTS,
    exceptions: tuple[type[Exception], ...] = (Exception,),
    base_delay: float = DEFAULT_BASE_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
    label: str = "call",
) -> T:
    """Execute an async function, retrying on the given exceptions.

    Args:
        fn: Async function to execute (typically a closure or partial)
        attempts: Maximum number of attempts
        exceptions: Exception types that count as transient
        base_delay: Base delay in seconds for exponential backoff
        max_delay: Upper bound for a single delay
        label: Name used in log messages

    Returns:
        Result from the first successful attempt

    Raises:
        The last exception if all attempts fail

    Example:
        response = await with_retry(
            lambda: client.get(f"/users/{courial_id}/profile"),
            attempts=3,
            exceptions=(httpx.RequestError,),
            label="courial.profile",
        )
    """
    last_error: Exception | None = None

    for attempt in range(attempts):
        try:
            return await fn()
        except exceptions as e:
            last_error = e
            if attempt < attempts - 1:
                delay = _calculate_delay(attempt, base_delay, max_delay)
                logger.debug(
                    "%s failed (attempt %s/%s), retrying in %.2fs: %s",
                    label,
                    attempt + 1,
                    attempts,
                    delay,
                    e,
                    extra={"attempt": attempt + 1},
                )
                await asyncio.sleep(delay)

    raise last_error  # type: ignore[misc]
