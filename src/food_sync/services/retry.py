"""Bounded retry with an explicit backoff schedule."""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

T = TypeVar("T")

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to retry and how long to wait between attempts."""

    max_retries: int = 3
    backoff_seconds: tuple[float, ...] = (1.0, 2.0, 4.0)
    deadline_seconds: float | None = 30.0

    def delay_for(self, retry_index: int) -> float:
        """Return the delay before the given retry (0-based)."""
        if not self.backoff_seconds:
            return 0.0
        index = min(retry_index, len(self.backoff_seconds) - 1)
        return self.backoff_seconds[index]


async def retry_async(  # noqa: PLR0913
    operation: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    should_retry: Callable[[T], bool],
    action: str,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> T:
    """Run ``operation`` until ``should_retry`` is false or the policy runs out.

    The last result is returned as-is once retries are exhausted, so callers
    decide how to report a result that still asks for a retry.
    """
    started = clock()
    retries = 0
    while True:
        result = await operation()
        if not should_retry(result) or retries >= policy.max_retries:
            return result
        delay = policy.delay_for(retries)
        if (
            policy.deadline_seconds is not None
            and clock() - started + delay > policy.deadline_seconds
        ):
            _logger.warning(
                "%s retry deadline reached after %s retries", action, retries
            )
            return result
        _logger.warning(
            "%s retrying (retry %s/%s) in %.1fs",
            action,
            retries + 1,
            policy.max_retries,
            delay,
        )
        await sleep(delay)
        retries += 1
