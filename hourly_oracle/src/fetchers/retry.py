"""Transport-level retry with exponential backoff.

Retries belong to each source's own transport: the aggregation engine never
retries a bucket. Delays double with each attempt up to ``max_delay``:

    - attempt 1 fails: wait base_delay
    - attempt 2 fails: wait base_delay * 2
    - ... capped at max_delay

.. code-block:: python

    >>> policy = RetryPolicy(attempts=3, base_delay=2.0)
    >>> policy.delay_for(1), policy.delay_for(2)
    (2.0, 4.0)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from ..errors import SourceFailure, SourceTimeout, SourceUnavailable

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Retry configuration for a source transport.

    :ivar attempts: Total attempts including the first one (1 disables retry).
    :ivar base_delay: Delay after the first failed attempt, in seconds.
    :ivar max_delay: Upper bound for a single delay, in seconds.
    """

    attempts: int = 3
    base_delay: float = 2.0
    max_delay: float = 30.0

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError("attempts must be at least 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must not be negative")

    def delay_for(self, failed_attempts: int) -> float:
        """Backoff after ``failed_attempts`` consecutive failures."""
        return min(self.base_delay * (2 ** (failed_attempts - 1)), self.max_delay)

    @staticmethod
    def should_retry(error: SourceFailure) -> bool:
        """Timeouts and retryable HTTP statuses are retried, parse errors never."""
        if isinstance(error, SourceTimeout):
            return True
        if isinstance(error, SourceUnavailable):
            return error.retryable
        return False

    async def run(self, operation: Callable[[], Awaitable[T]], *, label: str = "") -> T:
        """Run ``operation`` with retries.

        :param operation: Zero-argument coroutine factory.
        :param label: Text used in log messages.
        :returns: The operation's result.
        :raises SourceFailure: The last failure once attempts are exhausted,
            or immediately for non-retryable failures.
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                return await operation()
            except SourceFailure as e:
                if attempt >= self.attempts or not self.should_retry(e):
                    raise
                delay = self.delay_for(attempt)
                logger.debug(
                    f"{label} attempt {attempt}/{self.attempts} failed ({e}), "
                    f"retrying in {delay:.1f}s"
                )
                await asyncio.sleep(delay)


NO_RETRY = RetryPolicy(attempts=1, base_delay=0.0)
