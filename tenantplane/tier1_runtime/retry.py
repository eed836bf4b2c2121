"""
tenantplane.tier1_runtime.retry
────────────────────────────────
Retry combinators backed by Tenacity.

``retry_on_conflict`` is the one way every mutating store call resolves an
optimistic-concurrency conflict: re-run the operation (which re-reads the
object and reapplies the intended state) under a bounded exponential
backoff, and re-raise the last conflict when the attempt budget runs out.

Usage:
    await retry_on_conflict(lambda: _bump_size(store, name))

    @retry_policy(max_attempts=5, on=[UpstreamError])
    async def bootstrap():
        ...
"""
from __future__ import annotations

import functools
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Type, TypeVar

from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from tenantplane.tier0_core.errors import ConflictError

T = TypeVar("T")

# Errors that are NEVER retried by retry_policy regardless of policy
_NON_RETRYABLE = (
    "tenantplane.tier0_core.errors.ValidationError",
    "tenantplane.tier0_core.errors.NotFoundError",
    "tenantplane.tier0_core.errors.ForbiddenError",
    "tenantplane.tier0_core.errors.ConfigurationError",
)


@dataclass(frozen=True)
class Backoff:
    """
    Exponential backoff: the n-th retry waits duration * factor ** (n - 1),
    capped at `cap`, plus up to `jitter` of the base duration.
    """
    steps: int = 4
    duration: float = 0.01
    factor: float = 5.0
    jitter: float = 0.1
    cap: float = 10.0

    def wait(self) -> Any:
        return wait_exponential(
            multiplier=self.duration, exp_base=self.factor, max=self.cap
        ) + wait_random(0, self.duration * self.jitter)


DEFAULT_BACKOFF = Backoff()


async def retry_on_conflict(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int | None = None,
    backoff: Backoff = DEFAULT_BACKOFF,
) -> T:
    """
    Run `operation` until it does not raise ConflictError, at most
    `max_attempts` times (default: backoff.steps). Any other error is
    raised immediately.
    """
    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(max_attempts or backoff.steps),
        wait=backoff.wait(),
        retry=retry_if_exception_type(ConflictError),
        reraise=True,
    ):
        with attempt:
            return await operation()
    raise AssertionError("unreachable")  # pragma: no cover


def _is_retryable(exc: BaseException) -> bool:
    """Return True if the exception should be retried."""
    fqn = f"{type(exc).__module__}.{type(exc).__qualname__}"
    return fqn not in _NON_RETRYABLE


def retry_policy(
    max_attempts: int = 3,
    min_wait: float = 0.5,
    max_wait: float = 10.0,
    jitter: float = 1.0,
    on: list[Type[Exception]] | None = None,
) -> Callable:
    """
    Decorator applying exponential backoff with jitter to a coroutine function.

    Args:
        max_attempts: Total number of attempts (including first).
        min_wait:     Minimum wait seconds between retries.
        max_wait:     Maximum wait seconds between retries.
        jitter:       Maximum random seconds added to each wait.
        on:           Specific exception types to retry on. If None, retries
                      on every error except the non-retryable ones.
    """
    def decorator(fn: Callable) -> Callable:
        @functools.wraps(fn)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            if on:
                retry_on = retry_if_exception_type(tuple(on))
            else:
                retry_on = retry_if_exception(_is_retryable)

            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(max_attempts),
                wait=wait_exponential(min=min_wait, max=max_wait) + wait_random(0, jitter),
                retry=retry_on,
                reraise=True,
            ):
                with attempt:
                    return await fn(*args, **kwargs)

        return wrapper
    return decorator


__all__ = ["Backoff", "DEFAULT_BACKOFF", "retry_on_conflict", "retry_policy"]
