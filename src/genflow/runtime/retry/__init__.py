"""Retry policies for model calls.

Provides the retry decision protocol, the default exponential backoff policy
and its backoff delay calculation.

Example:
    >>> from genflow.runtime.retry import retry_with_exponential_backoff
    >>> policy = retry_with_exponential_backoff(max_tries=5, initial_delay=1.0)
    >>> policy.should_retry(1, TransientProviderError("overloaded"))
    RetryAfter(delay=1.0)
"""

from .backoff import ExponentialBackoff
from .policy import (
    NO_RETRY,
    STOP,
    NoRetry,
    RetryAfter,
    RetryDecision,
    RetryPolicy,
    RetryWithExponentialBackoff,
    StopRetrying,
    retry_never,
    retry_with_exponential_backoff,
)

__all__ = [
    # Backoff
    "ExponentialBackoff",
    # Policy
    "RetryPolicy",
    "RetryDecision",
    "RetryAfter",
    "StopRetrying",
    "STOP",
    "RetryWithExponentialBackoff",
    "NoRetry",
    "NO_RETRY",
    "retry_never",
    "retry_with_exponential_backoff",
]
