"""
Bounded retry with incremental backoff.

One retry policy shared by navigation, the challenge solver loop and the
keyword-level wrapper. The delay before attempt ``n + 1`` is
``n * base_delay``.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_incrementing,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def backoff_delay(attempt: int, base_delay: float) -> float:
    """Delay slept after a failed ``attempt`` (1-based)."""
    return attempt * base_delay


def _always(_exc: BaseException) -> bool:
    return True


async def retry_async(
    fn: Callable[[int], Awaitable[T]],
    *,
    attempts: int,
    base_delay: float,
    retry_on: Callable[[BaseException], bool] = _always,
    on_retry: Optional[Callable[[int, BaseException, float], None]] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    label: str = "operation",
) -> T:
    """
    Run ``fn`` until it succeeds or ``attempts`` are used up.

    Args:
        fn: Coroutine function receiving the 1-based attempt number
        attempts: Maximum number of attempts (>= 1)
        base_delay: Seconds multiplied by the attempt number between tries
        retry_on: Predicate; exceptions it rejects propagate immediately
        on_retry: Called with (attempt, exception, delay) before sleeping
        sleep: Sleep coroutine, injectable for tests
        label: Name used in log messages

    Returns:
        Whatever ``fn`` returned on the successful attempt

    Raises:
        The last exception raised by ``fn`` once attempts are exhausted
    """
    attempts = max(1, attempts)

    def _before_sleep(state: RetryCallState) -> None:
        exc = state.outcome.exception() if state.outcome else None
        delay = state.next_action.sleep if state.next_action else 0.0
        logger.warning(
            f"{label} attempt {state.attempt_number}/{attempts} failed: {exc}; "
            f"retrying in {delay:.1f}s"
        )
        if on_retry is not None and exc is not None:
            on_retry(state.attempt_number, exc, delay)

    retrying = AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait_incrementing(start=base_delay, increment=base_delay),
        retry=retry_if_exception(retry_on),
        before_sleep=_before_sleep,
        sleep=sleep,
        reraise=True,
    )

    async for attempt in retrying:
        with attempt:
            result = await fn(attempt.retry_state.attempt_number)
    return result
