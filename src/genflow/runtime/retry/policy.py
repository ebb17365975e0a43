"""Retry policies for model calls.

A retry policy is a pure decision function: given the number of the attempt
that just failed and its error, it answers "retry after N seconds" or "stop".
Only TransientProviderError is ever retried; every other error kind stops the
call immediately. Policies keep no counters, so one instance is safely shared
by any number of concurrent calls.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Annotated, Protocol, TypeAlias, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field, PositiveFloat, computed_field

from genflow.foundation.errors import TransientProviderError

from .backoff import ExponentialBackoff


@dataclass(frozen=True, slots=True)
class RetryAfter:
    """Retry the call after `delay` seconds."""

    delay: float


@dataclass(frozen=True, slots=True)
class StopRetrying:
    """Do not retry; the last error is surfaced."""


RetryDecision: TypeAlias = RetryAfter | StopRetrying

STOP = StopRetrying()


@runtime_checkable
class RetryPolicy(Protocol):
    """Decides whether and when a failed attempt is retried."""

    def should_retry(self, attempt_number: int, error: BaseException) -> RetryDecision:
        """Decide after attempt `attempt_number` (1-based) failed with `error`."""
        ...


class RetryWithExponentialBackoff(BaseModel):
    """Exponential backoff retry policy.

    Delay after failed attempt k is ``initial_delay * backoff_factor ** (k - 1)``,
    optionally capped at `max_delay`. At most `max_tries` attempts are made in
    total (including the first); when they are exhausted the last error is
    surfaced as-is.

    Example:
        >>> model = model.with_settings(
        ...     retry=RetryWithExponentialBackoff(max_tries=8, initial_delay=1.0),
        ... )
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        revalidate_instances="never",
        json_schema_extra={
            "title": "Exponential Backoff Retry",
            "examples": [{"max_tries": 3, "initial_delay": 2.0, "backoff_factor": 2.0}],
        },
    )

    max_tries: Annotated[int, Field(ge=1, le=20)] = 3
    initial_delay: Annotated[float, Field(ge=0.0)] = 2.0
    backoff_factor: PositiveFloat = 2.0
    max_delay: PositiveFloat | None = None
    jitter: bool = False

    @computed_field
    @property
    def is_disabled(self) -> bool:
        """Whether the policy only ever makes a single attempt."""
        return self.max_tries == 1

    @property
    def backoff(self) -> ExponentialBackoff:
        return ExponentialBackoff(
            base=self.initial_delay,
            multiplier=self.backoff_factor,
            max_delay=self.max_delay,
            jitter=self.jitter,
        )

    def should_retry(self, attempt_number: int, error: BaseException) -> RetryDecision:
        if not isinstance(error, TransientProviderError) or attempt_number >= self.max_tries:
            return STOP
        return RetryAfter(self.backoff.delay(attempt_number - 1))

    def __hash__(self) -> int:
        return hash((self.max_tries, self.initial_delay, self.backoff_factor, self.max_delay, self.jitter))


class NoRetry:
    """Single attempt; every failure is surfaced immediately."""

    __slots__ = ()

    def should_retry(self, attempt_number: int, error: BaseException) -> RetryDecision:
        return STOP

    def __repr__(self) -> str:
        return "NoRetry()"


# Singleton for no-retry policy
NO_RETRY = NoRetry()


def retry_never() -> NoRetry:
    return NO_RETRY


def retry_with_exponential_backoff(
    *,
    max_tries: int = 3,
    initial_delay: float = 2.0,
    backoff_factor: float = 2.0,
    max_delay: float | None = None,
    jitter: bool = False,
) -> RetryWithExponentialBackoff:
    """Create an exponential backoff policy (delays in seconds)."""
    return RetryWithExponentialBackoff(
        max_tries=max_tries,
        initial_delay=initial_delay,
        backoff_factor=backoff_factor,
        max_delay=max_delay,
        jitter=jitter,
    )
