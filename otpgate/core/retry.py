"""Retry strategies built on tenacity."""

import logging as stdlib_logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Tuple, Type, TypeVar, Union

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry,
    retry_if_exception,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)
from tenacity.wait import wait_base

from otpgate.core.exceptions import ResourceBusyError, TransportError

# Stdlib logger needed for tenacity's before_sleep_log (intercepted into loguru)
_stdlib_logger = stdlib_logging.getLogger(__name__)

T = TypeVar("T")

ExceptionTypes = Union[Type[BaseException], Tuple[Type[BaseException], ...]]


def _make_retry(
    attempts: int,
    wait_strategy: object,
    exception_types: ExceptionTypes,
) -> object:
    """
    Factory for creating retry decorators with consistent configuration.

    Args:
        attempts: Maximum number of retry attempts
        wait_strategy: Tenacity wait strategy
        exception_types: Exception type(s) to retry on

    Returns:
        Configured retry decorator
    """
    return retry(
        stop=stop_after_attempt(attempts),
        wait=wait_strategy,
        retry=retry_if_exception_type(exception_types),
        before_sleep=before_sleep_log(_stdlib_logger, stdlib_logging.WARNING),
        reraise=True,
    )


@dataclass
class RetryPolicy:
    """
    Reusable retry policy: attempt budget, backoff schedule and retryable-error predicate.

    The policy is independent of the operation it wraps; the same instance can
    drive any coroutine function through ``run``.
    """

    attempts: int
    wait: wait_base
    retryable: Callable[[BaseException], bool] = field(default=lambda exc: True)

    async def run(self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """
        Run ``fn`` under this policy.

        Args:
            fn: Coroutine function to call
            *args: Positional arguments for ``fn``
            **kwargs: Keyword arguments for ``fn``

        Returns:
            Result of the first successful call

        Raises:
            Exception: The last error once attempts are exhausted, or the first
                non-retryable error
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.attempts),
            wait=self.wait,
            retry=retry_if_exception(self.retryable),
            before_sleep=before_sleep_log(_stdlib_logger, stdlib_logging.WARNING),
            reraise=True,
        )
        return await retrying(fn, *args, **kwargs)


def get_reclaim_policy(
    attempts: int = 3, base_delay: float = 1.0, max_delay: Optional[float] = None
) -> RetryPolicy:
    """
    Get retry policy for on-disk session reclamation.

    Only resource-busy failures are retried, with exponentially increasing delay.

    Args:
        attempts: Maximum number of attempts
        base_delay: Delay before the first retry in seconds
        max_delay: Upper bound for a single delay (defaults to 8x base_delay)

    Returns:
        RetryPolicy configured for ResourceBusyError
    """
    return RetryPolicy(
        attempts=attempts,
        wait=wait_exponential(
            multiplier=base_delay, min=base_delay, max=max_delay or base_delay * 8
        ),
        retryable=lambda exc: isinstance(exc, ResourceBusyError),
    )


def get_bridge_retry():
    """
    Get retry strategy for idempotent messaging bridge calls.

    Returns:
        Retry decorator configured for transport errors
    """
    return _make_retry(
        attempts=3,
        wait_strategy=wait_exponential(multiplier=1, min=0.5, max=4) + wait_random(0, 0.5),
        exception_types=TransportError,
    )
