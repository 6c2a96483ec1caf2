"""
Retry policy — bounded attempts with exponential backoff.

Independent of any action type: the same policy covers package
database locks, flaky mirrors and git clone hiccups.
"""

from __future__ import annotations

import random
from dataclasses import dataclass


@dataclass(frozen=True)
class RetryPolicy:
    """How often and how patiently to retry transient failures.

    With the defaults a step is attempted 3 times, waiting 2s and then
    4s in between; a larger ``max_attempts`` continues 8s, 8s, ...
    ``jitter`` adds up to that fraction of the delay at random, but
    delays never decrease from one wait to the next.
    """

    max_attempts: int = 3
    base_delay: float = 2.0
    max_delay: float = 8.0
    jitter: float = 0.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0 or self.max_delay < self.base_delay:
            raise ValueError("require 0 <= base_delay <= max_delay")

    def delay_for(self, attempt: int) -> float:
        """Base delay to wait after failed attempt number ``attempt`` (1-based)."""
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)

    def next_delay(self, attempt: int, previous: float = 0.0) -> float:
        delay = self.delay_for(attempt)
        if self.jitter:
            delay += random.uniform(0, delay * self.jitter)
        return max(delay, previous)

    def should_retry(self, attempt: int, transient: bool, retryable: bool) -> bool:
        return retryable and transient and attempt < self.max_attempts
