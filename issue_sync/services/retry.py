"""
Retry policy for issue tracker calls.

Transient failures are retried with capped exponential backoff. Rate
limits are handled with an adaptive wait taken from the server's
Retry-After hint and a separate budget. Authentication and client errors
are never retried.
"""

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, TypeVar

from issue_sync.services.tracker_client import (
    TrackerRateLimitError,
    TrackerTransientError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryPolicy:
    """Wraps an async operation with classified retries."""

    def __init__(
        self,
        max_attempts: int = 3,
        initial_interval: float = 30.0,
        max_interval: float = 120.0,
        multiplier: float = 2.0,
        rate_limit_max_waits: int = 3,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.initial_interval = initial_interval
        self.max_interval = max_interval
        self.multiplier = multiplier
        self.rate_limit_max_waits = rate_limit_max_waits
        self._sleep = sleep or asyncio.sleep

    def backoff_intervals(self) -> List[float]:
        """Waits between consecutive transient attempts, in order."""
        intervals = []
        interval = min(self.initial_interval, self.max_interval)
        for _ in range(self.max_attempts - 1):
            intervals.append(interval)
            interval = min(interval * self.multiplier, self.max_interval)
        return intervals

    async def call(
        self,
        operation: Callable[[], Awaitable[T]],
        description: str = "tracker call",
    ) -> T:
        """
        Run ``operation`` until it succeeds or its retry budget is spent.

        Args:
            operation: Zero-argument coroutine factory
            description: Label used in log messages

        Returns:
            Whatever the operation returns

        Raises:
            TrackerTransientError: After max_attempts transient failures
            TrackerRateLimitError: After rate_limit_max_waits waits
            Any other exception from the operation, unchanged and immediately
        """
        intervals = self.backoff_intervals()
        attempt = 0
        rate_limit_waits = 0

        while True:
            try:
                return await operation()

            except TrackerRateLimitError as e:
                if rate_limit_waits >= self.rate_limit_max_waits:
                    logger.error(
                        f"{description}: still rate limited after "
                        f"{rate_limit_waits} waits, giving up"
                    )
                    raise
                rate_limit_waits += 1
                logger.warning(
                    f"{description}: rate limited, waiting {e.retry_after}s "
                    f"({rate_limit_waits}/{self.rate_limit_max_waits})"
                )
                await self._sleep(e.retry_after)

            except TrackerTransientError as e:
                attempt += 1
                if attempt >= self.max_attempts:
                    logger.error(
                        f"{description}: failed after {attempt} attempts: {e}"
                    )
                    raise
                wait = intervals[attempt - 1]
                logger.warning(
                    f"{description}: attempt {attempt}/{self.max_attempts} failed "
                    f"({e}), retrying in {wait}s"
                )
                await self._sleep(wait)


def get_retry_policy() -> RetryPolicy:
    """
    Factory function to create a retry policy from settings.

    Returns:
        Configured RetryPolicy instance
    """
    from issue_sync.config import settings

    return RetryPolicy(
        max_attempts=settings.RETRY_MAX_ATTEMPTS,
        initial_interval=settings.RETRY_INITIAL_INTERVAL,
        max_interval=settings.RETRY_MAX_INTERVAL,
        multiplier=settings.RETRY_MULTIPLIER,
        rate_limit_max_waits=settings.RATE_LIMIT_MAX_WAITS,
    )
