"""Throttle policies: admission control for provider attempts."""

from .policy import (
    UNLIMITED,
    MaxConcurrencyThrottle,
    RateLimitThrottle,
    ThrottlePolicy,
    UnlimitedThrottle,
    throttle_max_concurrency,
    throttle_rate_limit,
    throttle_unlimited,
)

__all__ = [
    "ThrottlePolicy",
    "UnlimitedThrottle",
    "MaxConcurrencyThrottle",
    "RateLimitThrottle",
    "UNLIMITED",
    "throttle_unlimited",
    "throttle_max_concurrency",
    "throttle_rate_limit",
]
