"""Exponential backoff delay calculation for retry policies."""

from __future__ import annotations

import random
from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class ExponentialBackoff:
    """Exponential backoff with optional cap and jitter.

    Delay = min(base * (multiplier ^ attempt), max_delay) * jitter, where
    attempt is 0-indexed (first retry = attempt 0).

    Attributes:
        base: Initial delay in seconds (default: 2.0)
        multiplier: Exponential growth factor (default: 2.0)
        max_delay: Maximum delay cap in seconds, None for uncapped
        jitter: Randomize each delay to 0.5-1.5x (default: False)
    """

    base: float = 2.0
    multiplier: float = 2.0
    max_delay: float | None = None
    jitter: bool = False

    def delay(self, attempt: int) -> float:
        d = self.base * (self.multiplier ** attempt)
        if self.max_delay is not None:
            d = min(d, self.max_delay)
        return d * (0.5 + random.random()) if self.jitter else d
