"""Retry policy for destination API calls, built on tenacity.

The backoff is exact exponential with no jitter: the wait before retry
``n`` (0-based) is ``base_backoff_ms * 2**n``. Import reports and operator
runbooks derive expected run times from that schedule.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from recipe_migration.client.exceptions import NetworkError, RateLimitError, ServerError
from recipe_migration.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class RetryOutcome(Generic[T]):
    """Result of :func:`with_retry`.

    Exactly one of ``value`` / ``error`` is meaningful: ``error`` is set when
    the final attempt failed (retries exhausted or a terminal error).
    """

    value: T | None = None
    error: BaseException | None = None
    retry_count: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        """Return the value or raise the last error."""
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]


def is_retryable(exc: BaseException) -> bool:
    """Transport failures (timeouts and refused connections included) and 5xx responses.

    A 429 is a destination-side throttle and is retried as well. Every other
    4xx is terminal.
    """
    return isinstance(exc, (NetworkError, ServerError, RateLimitError))


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "retry_scheduled",
        attempt=retry_state.attempt_number,
        wait_seconds=retry_state.next_action.sleep if retry_state.next_action else None,
        error_type=type(exc).__name__ if exc else None,
        error=str(exc) if exc else None,
    )


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    max_retries: int,
    base_backoff_ms: int,
    should_retry: Callable[[BaseException], bool] = is_retryable,
    sleep: Callable[[float], Awaitable[Any]] | None = None,
) -> RetryOutcome[T]:
    """Run ``operation`` with exponential backoff.

    The operation is attempted up to ``max_retries + 1`` times. After a
    failure for which ``should_retry`` is true the policy waits
    ``base_backoff_ms * 2**attempt`` milliseconds (attempt counted from 0)
    before trying again. A failure for which ``should_retry`` is false ends
    the loop immediately.

    Args:
        operation: Zero-argument coroutine factory
        max_retries: Number of retries after the first attempt
        base_backoff_ms: Wait before the first retry, in milliseconds
        should_retry: Predicate deciding whether an exception is transient
        sleep: Awaitable sleep taking seconds (defaults to ``asyncio.sleep``)

    Returns:
        RetryOutcome with the value or the last error, and the number of
        retries that were performed
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(max_retries + 1),
        wait=wait_exponential(multiplier=base_backoff_ms / 1000, exp_base=2, min=0),
        retry=retry_if_exception(should_retry),
        sleep=sleep or asyncio.sleep,
        before_sleep=_log_retry,
        reraise=True,
    )

    attempt_number = 0
    try:
        async for attempt in retrying:
            with attempt:
                attempt_number = attempt.retry_state.attempt_number
                value = await operation()
    except Exception as e:
        return RetryOutcome(error=e, retry_count=max(attempt_number - 1, 0))

    return RetryOutcome(value=value, retry_count=attempt_number - 1)
