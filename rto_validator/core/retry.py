"""Retry with exponential backoff for async operations.

Used by the AI validation client for transient provider errors and by the
indexing detector's poll fallback, which is a retry loop with a constant
delay (``multiplier=1``).
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

from rto_validator.core.exceptions import RetryExhaustedError, is_retryable_error
from rto_validator.utils.logging import get_logger

LOGGER = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff parameters.

    The delay before retry ``n`` (1-based) is
    ``min(base_delay * multiplier ** (n - 1), max_delay)``.
    """
    max_attempts: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: Optional[float] = 8.0

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the given failed attempt (1-based)."""
        delay = self.base_delay * (self.multiplier ** (attempt - 1))
        if self.max_delay is not None:
            delay = min(delay, self.max_delay)
        return delay


@dataclass
class RetryResult(Generic[T]):
    value: T
    attempts: int

    @property
    def retry_count(self) -> int:
        return self.attempts - 1


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    is_retryable: Callable[[BaseException], bool] = is_retryable_error,
    on_retry: Optional[Callable[[int, BaseException, float], Any]] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    operation_name: str = "operation",
) -> RetryResult[T]:
    """Run ``operation`` until it succeeds or the policy gives up.

    Args:
        operation: Zero-argument coroutine factory, called once per attempt
        policy: Attempt budget and backoff parameters
        is_retryable: Predicate deciding whether an error is worth another attempt
        on_retry: Optional callback ``(attempt, error, delay)`` before each sleep
        sleep: Sleep function (injectable for tests)
        operation_name: Label used in log messages

    Returns:
        RetryResult with the operation's value and the number of attempts made

    Raises:
        RetryExhaustedError: When every attempt failed with a retryable error
        Exception: The first non-retryable error, unchanged
    """
    if policy.max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    attempt = 0
    while True:
        attempt += 1
        try:
            value = await operation()
            return RetryResult(value=value, attempts=attempt)
        except Exception as e:
            if not is_retryable(e):
                raise

            if attempt >= policy.max_attempts:
                LOGGER.warning(
                    f"{operation_name} failed after {attempt} attempt(s): {e}"
                )
                raise RetryExhaustedError(attempt, e) from e

            delay = policy.delay_for(attempt)
            LOGGER.info(
                f"{operation_name} attempt {attempt}/{policy.max_attempts} failed, "
                f"retrying in {delay:.1f}s: {e}"
            )
            if on_retry is not None:
                on_retry(attempt, e, delay)
            await sleep(delay)
