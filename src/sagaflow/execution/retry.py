"""Retry strategies with exponential backoff, jitter, and configurable policies.

Used by :class:`~sagaflow.orchestration.middleware.RetryMiddleware` to decide
whether a failed step is attempted again and how long to wait first.

Example:
    >>> from sagaflow.execution.retry import ExponentialBackoff
    >>>
    >>> strategy = ExponentialBackoff(max_retries=5, base_delay=1.0, max_delay=60.0, jitter=False)
    >>> [strategy.next_delay(n) for n in range(4)]
    [1.0, 2.0, 4.0, 8.0]
"""

from __future__ import annotations

import asyncio
import random
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from sagaflow.core.errors import is_retryable

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[Any]]
RetryCallback = Callable[[int, BaseException, float], None]


class RetryStrategy(ABC):
    """Abstract base for retry strategies.

    ``retry`` arguments are zero-based: 0 means "the first retry", which
    follows the first failed attempt.
    """

    @abstractmethod
    def next_delay(self, retry: int) -> float:
        """Delay in seconds before the given retry."""
        ...

    @abstractmethod
    def should_retry(self, retry: int, error: BaseException | None = None) -> bool:
        """Whether the given retry should happen at all."""
        ...


@dataclass
class ExponentialBackoff(RetryStrategy):
    """Exponential backoff with optional jitter.

    Delay = min(base_delay * (multiplier ** retry), max_delay) +/- jitter

    Attributes:
        max_retries: Maximum number of retries after the first attempt
        base_delay: Initial delay in seconds
        max_delay: Maximum delay cap in seconds
        multiplier: Exponential multiplier
        jitter: Add randomness to prevent thundering herd
        jitter_range: Range of jitter as fraction of delay (0.0-1.0)
        retryable_errors: Exception types that are retried (None = all)
    """

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    multiplier: float = 2.0
    jitter: bool = True
    jitter_range: float = 0.25
    retryable_errors: tuple[type[BaseException], ...] | None = None

    def next_delay(self, retry: int) -> float:
        delay = min(self.base_delay * (self.multiplier**retry), self.max_delay)
        if self.jitter:
            jitter_amount = delay * self.jitter_range
            delay = max(0.0, delay + random.uniform(-jitter_amount, jitter_amount))
        return delay

    def should_retry(self, retry: int, error: BaseException | None = None) -> bool:
        if retry >= self.max_retries:
            return False
        if error is not None and self.retryable_errors is not None:
            return isinstance(error, self.retryable_errors)
        return True


@dataclass
class LinearBackoff(RetryStrategy):
    """Linear backoff: delay = base_delay + increment * retry."""

    max_retries: int = 3
    base_delay: float = 1.0
    increment: float = 1.0
    max_delay: float = 30.0

    def next_delay(self, retry: int) -> float:
        return min(self.base_delay + self.increment * retry, self.max_delay)

    def should_retry(self, retry: int, error: BaseException | None = None) -> bool:
        return retry < self.max_retries


@dataclass
class ConstantBackoff(RetryStrategy):
    """Constant delay between retries."""

    max_retries: int = 3
    delay: float = 1.0

    def next_delay(self, retry: int) -> float:
        return self.delay

    def should_retry(self, retry: int, error: BaseException | None = None) -> bool:
        return retry < self.max_retries


@dataclass
class TransientOnly(RetryStrategy):
    """Wraps another strategy and only retries errors flagged retryable."""

    inner: RetryStrategy

    def next_delay(self, retry: int) -> float:
        return self.inner.next_delay(retry)

    def should_retry(self, retry: int, error: BaseException | None = None) -> bool:
        if error is not None and not is_retryable(error):
            return False
        return self.inner.should_retry(retry, error)


@dataclass
class NoRetry(RetryStrategy):
    """No retry - fail immediately."""

    def next_delay(self, retry: int) -> float:
        return 0.0

    def should_retry(self, retry: int, error: BaseException | None = None) -> bool:
        return False


async def retry_async(
    func: Callable[[], Awaitable[T]],
    strategy: RetryStrategy,
    *,
    on_retry: RetryCallback | None = None,
    sleep: SleepFn = asyncio.sleep,
    never_retry: tuple[type[BaseException], ...] = (),
) -> tuple[T, int]:
    """Await ``func()`` until it succeeds or the strategy gives up.

    Returns:
        ``(result, attempts)`` where ``attempts`` counts every call made

    Raises:
        The last exception once retries are exhausted, or immediately for
        exception types in ``never_retry``.
    """
    retry = 0
    while True:
        try:
            return await func(), retry + 1
        except never_retry:
            raise
        except Exception as exc:
            if not strategy.should_retry(retry, exc):
                exc.add_note(f"gave up after {retry + 1} attempt(s)")
                raise
            delay = strategy.next_delay(retry)
            if on_retry is not None:
                on_retry(retry + 1, exc, delay)
            await sleep(delay)
            retry += 1
