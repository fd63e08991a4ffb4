from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from loguru import logger

from .errors import ConfigurationError
from .metrics import RETRIES_TOTAL

T = TypeVar("T")

RetryClassifier = Callable[[BaseException], bool]
RetryObserver = Callable[[BaseException, int], None]


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff: delay = min(initial * 2**attempt, max).

    ``max_retries`` counts retries after the first call, so the operation runs
    at most ``max_retries + 1`` times. ``retry_on`` decides whether a failure
    is worth retrying; ``None`` retries everything.
    """

    max_retries: int = 3
    initial_delay_ms: int = 1000
    max_delay_ms: int = 30_000
    jitter: bool = False
    retry_on: Optional[RetryClassifier] = None

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ConfigurationError("max_retries must be >= 0")
        if self.initial_delay_ms <= 0:
            raise ConfigurationError("initial_delay_ms must be > 0")
        if self.max_delay_ms <= 0:
            raise ConfigurationError("max_delay_ms must be > 0")

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after the failed attempt with 0-based index ``attempt``."""
        return calculate_retry_delay(
            attempt, self.initial_delay_ms, self.max_delay_ms, jitter=self.jitter
        )

    def should_retry(self, e: BaseException) -> bool:
        return True if self.retry_on is None else bool(self.retry_on(e))


def calculate_retry_delay(
    attempt: int, base_delay_ms: int = 1000, max_delay_ms: int = 30000, jitter: bool = False
) -> float:
    """
    Calculate retry delay with exponential backoff and optional jitter.

    Args:
        attempt: Current attempt number (0-based)
        base_delay_ms: Base delay in milliseconds
        max_delay_ms: Maximum delay in milliseconds
        jitter: Add +/-25% random jitter to desynchronize clients sharing an endpoint

    Returns:
        Delay in seconds
    """
    delay_ms = min(base_delay_ms * (2**attempt), max_delay_ms)

    if jitter:
        jitter_range = delay_ms * 0.25
        delay_ms += random.uniform(-jitter_range, jitter_range)

    return max(0, delay_ms / 1000.0)


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    on_retry: Optional[RetryObserver] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run ``fn`` and retry failures according to ``policy``.

    ``on_retry(error, attempt_number)`` fires before each wait with a 1-based
    attempt number. The last error propagates once attempts are exhausted or
    the error is classified as not retryable.
    """
    attempt = 0
    while True:
        try:
            return await fn()
        except Exception as e:
            if attempt >= policy.max_retries or not policy.should_retry(e):
                raise

            delay = policy.delay_for(attempt)
            attempt += 1
            RETRIES_TOTAL.inc()
            if on_retry is not None:
                try:
                    on_retry(e, attempt)
                except Exception as obs_exc:
                    logger.debug(f"on_retry observer error (ignored): {obs_exc!r}")
            await sleep(delay)
