"""Retry with backoff for transient remote failures.

Example:
    policy = RetryPolicy(max_retries=2, initial_delay=0.5, max_delay=2.0)
    rows = await with_retry(lambda: provider.rpc("get_feed", {}), policy)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from concord.errors import ProviderError, RequestTimeoutError

T = TypeVar("T")

logger = logging.getLogger(__name__)

_TRANSIENT_MARKERS = ("network", "timeout", "connection")


def is_transient_error(error: BaseException) -> bool:
    """Return True when retrying ``error`` has a chance of succeeding."""
    if isinstance(error, ProviderError):
        return error.transient
    if isinstance(error, (RequestTimeoutError, TimeoutError, ConnectionError)):
        return True
    message = str(error).lower()
    return any(marker in message for marker in _TRANSIENT_MARKERS)


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Backoff settings; exponential unless ``linear`` is set."""

    max_retries: int = 3
    initial_delay: float = 1.0
    max_delay: float = 10.0
    multiplier: float = 2.0
    linear: bool = False

    def delay_for(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (0-based)."""
        if self.linear:
            delay = self.initial_delay * (attempt + 1)
        else:
            delay = self.initial_delay * (self.multiplier**attempt)
        return min(delay, self.max_delay)


NETWORK_RETRY = RetryPolicy(max_retries=2, initial_delay=1.0, max_delay=5.0)
STORE_RETRY = RetryPolicy(max_retries=2, initial_delay=0.5, max_delay=2.0)


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy = NETWORK_RETRY,
    retry_on: Callable[[BaseException], bool] = is_transient_error,
) -> T:
    """Await ``fn()`` and retry it while ``retry_on`` accepts the failure.

    The last error is re-raised once the retry budget is spent.
    """
    attempt = 0
    while True:
        try:
            return await fn()
        except Exception as e:
            if attempt >= policy.max_retries or not retry_on(e):
                raise
            delay = policy.delay_for(attempt)
            attempt += 1
            logger.info(
                "Retry attempt %d/%d after %.2fs: %s", attempt, policy.max_retries, delay, e
            )
            await asyncio.sleep(delay)
