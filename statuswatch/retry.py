"""
Bounded exponential backoff for single outbound calls.

delay = min(base * 2^attempt, cap), no jitter. The sleep between attempts
is a plain ``asyncio.sleep`` so cancelling the enclosing task aborts the
wait immediately.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Retry parameters shared by every HTTP leg of a refresh."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 8.0

    def delay_for(self, attempt: int) -> float:
        """Backoff after the zero-based ``attempt`` failed."""
        return min(self.base_delay * (2 ** attempt), self.max_delay)

    async def run(self, operation: Callable[[], Awaitable[T]]) -> T:
        return await with_retry(
            operation,
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
        )


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 8.0,
) -> T:
    """
    Await ``operation()`` up to ``max_attempts`` times.

    Raises:
        The exception from the final attempt once attempts are exhausted.
    """
    attempts = max(1, max_attempts)
    policy = RetryPolicy(attempts, base_delay, max_delay)

    for attempt in range(attempts):
        try:
            return await operation()
        except Exception as exc:
            if attempt == attempts - 1:
                raise
            wait = policy.delay_for(attempt)
            logger.debug(
                "attempt %d/%d failed (%s); retrying in %.1fs",
                attempt + 1,
                attempts,
                exc,
                wait,
            )
            await asyncio.sleep(wait)

    raise AssertionError("unreachable")  # pragma: no cover
