"""
Retry policy with exponential backoff and jitter for sink delivery.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Callable

from .errors import TransientIoError


def default_retry_classifier(exc: Exception) -> bool:
    """Transient I/O only: connection failures, timeouts and 5xx."""
    return isinstance(exc, (TransientIoError, TimeoutError, ConnectionError))


@dataclass
class RetryPolicy:
    """Bounded retry with exponential backoff.

    ``max_attempts`` counts the first try, so ``max_attempts=3`` means one
    request plus at most two retries.
    """

    max_attempts: int = 3
    initial_backoff_ms: int = 1000
    max_backoff_ms: int = 8000
    backoff_multiplier: float = 2.0
    jitter: bool = False
    classify_retryable: Callable[[Exception], bool] = field(default=default_retry_classifier)

    def __post_init__(self):
        if self.max_attempts < 1:
            self.max_attempts = 1

    def next_backoff_ms(self, attempt: int) -> int:
        """Backoff before retry number ``attempt`` (1-based)."""
        base = self.initial_backoff_ms * (self.backoff_multiplier ** max(0, attempt - 1))
        delay = min(base, self.max_backoff_ms)
        if self.jitter:
            # 50-100% of the computed delay
            delay = random.uniform(delay / 2, delay)
        return int(delay)

    def should_retry(self, exc: Exception, attempt: int) -> bool:
        return attempt < self.max_attempts and self.classify_retryable(exc)
