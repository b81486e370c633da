"""Retry with exponential backoff for remote calls.

Embedders and stores wrap every outbound request with ``call_with_retry``.
Only transient failures (timeouts, connection errors, rate limits, server
errors) are retried; anything else is raised on the first attempt. The final
error is always re-raised unchanged so callers see the service's message.
"""

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from docvec.config import RetrySettings
from docvec.exceptions import DocvecError
from docvec.logging_config import get_logger
from docvec.observability.metrics import track_retry

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Configuration for retry behavior.

    Attributes:
        max_attempts: Maximum number of attempts (including first try).
        initial_delay: Delay before the first retry in seconds.
        max_delay: Maximum delay in seconds.
        backoff_multiplier: Multiplier for exponential backoff.
        jitter: Whether to add random jitter to delay.
    """

    max_attempts: int = 3
    initial_delay: float = 0.25
    max_delay: float = 4.0
    backoff_multiplier: float = 2.0
    jitter: bool = True

    @classmethod
    def from_settings(cls, settings: RetrySettings) -> "RetryPolicy":
        """Build a policy from retry settings."""
        return cls(
            max_attempts=settings.max_attempts,
            initial_delay=settings.initial_delay,
            max_delay=settings.max_delay,
            backoff_multiplier=settings.backoff_multiplier,
            jitter=settings.jitter,
        )

    @classmethod
    def no_retry(cls) -> "RetryPolicy":
        """Policy that makes exactly one attempt."""
        return cls(max_attempts=1)


def calculate_delay(attempt: int, policy: RetryPolicy) -> float:
    """Calculate delay for a given attempt with exponential backoff.

    Args:
        attempt: Attempt number (0-based).
        policy: Retry policy.

    Returns:
        Delay in seconds.
    """
    delay = min(
        policy.initial_delay * (policy.backoff_multiplier**attempt),
        policy.max_delay,
    )

    # +/-25% random variation
    if policy.jitter:
        delay *= 0.75 + random.random() * 0.5

    return delay


def is_transient(error: BaseException) -> bool:
    """Whether an error is worth retrying."""
    return isinstance(error, DocvecError) and error.transient


async def call_with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    operation_name: str = "operation",
    retry_on: Callable[[BaseException], bool] = is_transient,
) -> T:
    """Execute an async operation with retry and exponential backoff.

    Args:
        operation: Zero-argument coroutine factory, invoked once per attempt.
        policy: Retry policy.
        operation_name: Name for logging and metrics.
        retry_on: Predicate selecting errors that may be retried.

    Returns:
        The operation's result.

    Raises:
        Exception: The last error raised by the operation.
    """
    for attempt in range(policy.max_attempts):
        try:
            result = await operation()
        except DocvecError as e:
            last_attempt = attempt == policy.max_attempts - 1
            if last_attempt or not retry_on(e):
                if attempt > 0:
                    logger.error(
                        f"{operation_name} failed after {attempt + 1} attempts: {e}",
                        extra={"error_code": e.code.value},
                    )
                raise

            delay = calculate_delay(attempt, policy)
            logger.warning(
                f"{operation_name} failed on attempt "
                f"{attempt + 1}/{policy.max_attempts}: {e}",
                extra={"error_code": e.code.value, "retry_in": round(delay, 3)},
            )
            track_retry(operation_name)
            await asyncio.sleep(delay)
            continue

        if attempt > 0:
            logger.info(f"{operation_name} succeeded after {attempt + 1} attempts")
        return result

    raise RuntimeError(f"{operation_name}: retry policy allows no attempts")
