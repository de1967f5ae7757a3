"""
Retry policy — bounded attempts with fixed or exponential backoff.

The engine is the only place that retries: adapters run an action
exactly once per call. Keeping the policy here makes attempt counts,
delays and logging centrally observable and testable.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass

logger = logging.getLogger(__name__)

BACKOFF_MODES = ("fixed", "exponential")


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to retry a failed action and how long to wait.

    ``max_retries`` counts retries, so a unit gets ``max_retries + 1``
    attempts in total.
    """

    max_retries: int = 2
    backoff: str = "exponential"
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter: float = 0.3            # fraction of the delay added at random

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.backoff not in BACKOFF_MODES:
            raise ValueError(f"backoff must be one of {', '.join(BACKOFF_MODES)}")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be >= 0")

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def delay_for(self, attempt: int) -> float:
        """Delay before the attempt following ``attempt`` (1-based)."""
        if self.backoff == "fixed":
            delay = self.base_delay
        else:
            delay = self.base_delay * (2 ** (attempt - 1))
        delay = min(delay, self.max_delay)
        if self.jitter and delay:
            delay += random.uniform(0, delay * self.jitter)
        return delay

    @classmethod
    def no_delay(cls, max_retries: int = 2) -> RetryPolicy:
        """Retries without waiting (tests, dry runs)."""
        return cls(max_retries=max_retries, backoff="fixed", base_delay=0.0, jitter=0.0)
