"""
Retry with exponential backoff — bounded retries for transient failures.

Uses exponential backoff with jitter:
    delay = min(base_delay * 2 ** (attempt - 1), max_delay) + U(0, 0.3 * delay)

Only exceptions the caller classifies as retryable are retried; the
final failure is re-raised unchanged.
"""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class Backoff:
    """Retry policy.

    Args:
        max_attempts: Total attempts, including the first one.
        base_delay: Delay before the second attempt, in seconds.
        max_delay: Upper bound for a single delay (before jitter).
        jitter: Fraction of the delay added as random jitter.
    """

    max_attempts: int = 4
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter: float = 0.3

    def delay(self, attempt: int) -> float:
        """Delay to wait after failed attempt number ``attempt`` (1-based)."""
        delay = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
        return delay + random.uniform(0, delay * self.jitter)

    def call(
        self,
        fn: Callable[[], T],
        *,
        retryable: Callable[[BaseException], bool],
        describe: str = "operation",
        sleep: Callable[[float], None] = time.sleep,
    ) -> T:
        """Run ``fn`` until it succeeds, fails fatally, or attempts run out."""
        attempt = 1
        while True:
            try:
                return fn()
            except Exception as e:
                if attempt >= self.max_attempts or not retryable(e):
                    raise
                wait = self.delay(attempt)
                logger.warning(
                    "%s failed (attempt %d/%d): %s; retrying in %.1fs",
                    describe,
                    attempt,
                    self.max_attempts,
                    e,
                    wait,
                )
                sleep(wait)
                attempt += 1
