"""
retry.py — Bounded retry with multiplicative backoff for async operations.

    attempt 1 ── fail ── sleep(base)
    attempt 2 ── fail ── sleep(base × m)
    attempt 3 ── fail ── raise last error

The operation is called at most `max_attempts` times. Sleeps are cooperative
(`asyncio.sleep` by default), so concurrent callers are never blocked.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar

from welfare_notify.core.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleeper = Callable[[float], Awaitable[Any]]


@dataclass
class RetryConfig:
    """Retry parameters for one class of remote call."""
    max_attempts: int = 3
    base_delay_seconds: float = 600.0
    multiplier: float = 1.5

    def delay_for(self, attempt: int) -> float:
        """Delay after the given failed attempt (1-based)."""
        return self.base_delay_seconds * (self.multiplier ** (attempt - 1))


class RetryingFetcher:
    """
    Wraps a zero-argument coroutine factory with bounded retries.

    Usage:
        fetcher = RetryingFetcher(RetryConfig(max_attempts=3, base_delay_seconds=5))
        data = await fetcher.fetch(lambda: client.fetch_weather(), label="weather")
    """

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        *,
        sleep: Optional[Sleeper] = None,
    ):
        self.config = config or RetryConfig(
            max_attempts=settings.FETCH_MAX_ATTEMPTS,
            base_delay_seconds=settings.FETCH_RETRY_DELAY,
            multiplier=settings.FETCH_BACKOFF_MULTIPLIER,
        )
        if self.config.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._sleep = sleep or asyncio.sleep

    async def fetch(self, operation: Callable[[], Awaitable[T]], label: str = "fetch") -> T:
        last_error: Optional[BaseException] = None

        for attempt in range(1, self.config.max_attempts + 1):
            try:
                result = await operation()
                if attempt > 1:
                    logger.info("%s succeeded on attempt %d", label, attempt)
                return result
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                last_error = exc
                if attempt >= self.config.max_attempts:
                    break
                delay = self.config.delay_for(attempt)
                logger.warning(
                    "%s attempt %d/%d failed: %s (retrying in %.1fs)",
                    label, attempt, self.config.max_attempts, exc, delay,
                )
                await self._sleep(delay)

        logger.error(
            "%s failed after %d attempts: %s",
            label, self.config.max_attempts, last_error,
        )
        if last_error is None:
            raise RuntimeError(f"{label} made no attempts")
        raise last_error
