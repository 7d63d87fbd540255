"""Retry with per-attempt timeout and exponential backoff for async operations."""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import ParamSpec, TypeVar

from src.config import Settings
from src.llm.errors import QuotaExceededError, RequestTimeoutError

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """How many attempts, how long each may take, and the backoff base."""

    max_attempts: int = 3
    timeout: float | None = 120.0
    base_delay: float = 1.0

    @classmethod
    def from_settings(cls, settings: Settings) -> RetryPolicy:
        return cls(
            max_attempts=settings.max_retries,
            timeout=settings.request_timeout_seconds,
            base_delay=settings.retry_base_delay,
        )

    def delay_for(self, attempt: int) -> float:
        """Backoff before the retry that follows 0-based *attempt*."""
        return self.base_delay * (2**attempt)


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
) -> T:
    """Run *operation* until it succeeds or the policy is exhausted.

    Timeouts and unclassified errors are retried; :class:`QuotaExceededError`
    propagates on first sight. The last error is re-raised once attempts run out.
    """
    attempts = max(1, policy.max_attempts)
    last_error: BaseException = ValueError("retry policy allows no attempts")

    for attempt in range(attempts):
        try:
            if policy.timeout is None:
                return await operation()
            return await asyncio.wait_for(operation(), timeout=policy.timeout)
        except QuotaExceededError:
            raise
        except asyncio.TimeoutError:
            last_error = RequestTimeoutError(policy.timeout)
            logger.warning("Attempt %d timed out after %ss", attempt + 1, policy.timeout)
        except Exception as exc:
            last_error = exc
            logger.warning("Attempt %d failed: %s", attempt + 1, exc)

        if attempt < attempts - 1:
            await sleep(policy.delay_for(attempt))

    raise last_error


def with_retry(
    policy: RetryPolicy,
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Decorator form of :func:`retry_async`."""

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            return await retry_async(lambda: func(*args, **kwargs), policy)

        return wrapper

    return decorator
