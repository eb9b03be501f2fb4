"""
MeshGate — Retry Wrapper
========================

What:  Bounded retries with exponential backoff for async operations.
How:   Tenacity's AsyncRetrying. Attempt 1 runs immediately; attempt k (k > 1)
       waits base_delay * 2^(k-2) seconds. After max_attempts failures the
       last error is re-raised unchanged.
Who:   Cross-service lookups (the notification service resolving a user's
       email address through the user service).

The caller must say which errors are worth retrying. A remote handler that
answered "conflict" or "validation_error" will answer the same again, so
`is_transient_transport_error` only accepts timeouts and connection failures.

    attempt:  1      2        3          4
    delay:    0   base    base*2     base*4
"""

import functools
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from meshgate.config import settings
from meshgate.exceptions import ConnectionFailureError, TransportTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")

RetryPredicate = Callable[[BaseException], bool]


def is_transient_transport_error(exc: BaseException) -> bool:
    """True for failures that may clear up on their own: timeouts and dropped connections."""
    return isinstance(exc, (TransportTimeoutError, ConnectionFailureError))


def _build_retrying(
    max_attempts: int,
    base_delay: float,
    retryable: RetryPredicate,
    sleep: Optional[Callable[[float], Awaitable[Any]]],
) -> AsyncRetrying:
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")
    if base_delay < 0:
        raise ValueError(f"base_delay must not be negative, got {base_delay}")

    kwargs = {}
    if sleep is not None:
        kwargs["sleep"] = sleep

    return AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        # multiplier * 2^(attempt_number - 1), attempt_number being the one that just failed
        wait=wait_exponential(multiplier=base_delay, exp_base=2),
        retry=retry_if_exception(retryable),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
        **kwargs,
    )


async def call_with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    retryable: RetryPredicate,
    max_attempts: Optional[int] = None,
    base_delay: Optional[float] = None,
    sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
) -> T:
    """
    Run `operation` until it succeeds, a non-retryable error is raised, or
    `max_attempts` attempts have failed.

    Args:
        operation:    Zero-argument coroutine function, called once per attempt
        retryable:    Predicate deciding whether an error is worth another attempt
        max_attempts: Defaults to settings.retry_max_attempts
        base_delay:   Seconds before attempt 2; defaults to settings.retry_base_delay
        sleep:        Replacement for asyncio.sleep (tests)

    Raises:
        Whatever the last attempt raised.
    """
    retrying = _build_retrying(
        max_attempts if max_attempts is not None else settings.retry_max_attempts,
        base_delay if base_delay is not None else settings.retry_base_delay,
        retryable,
        sleep,
    )
    async for attempt in retrying:
        with attempt:
            return await operation()


def with_retry(
    *,
    retryable: RetryPredicate,
    max_attempts: Optional[int] = None,
    base_delay: Optional[float] = None,
):
    """
    Decorator form of call_with_retry for async functions.

    Usage:
        @with_retry(retryable=is_transient_transport_error, max_attempts=3, base_delay=0.5)
        async def fetch_user(user_id): ...
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            return await call_with_retry(
                lambda: func(*args, **kwargs),
                retryable=retryable,
                max_attempts=max_attempts,
                base_delay=base_delay,
            )

        return wrapper

    return decorator
