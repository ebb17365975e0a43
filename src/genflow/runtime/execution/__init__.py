"""Call execution: retry, throttling, cancellation and lifecycle events for every model call."""

from .call import (
    AttemptOutcome,
    CallExecution,
    Cancelled,
    FatalFailure,
    RetryableFailure,
    Success,
    classify_provider_error,
    execute_call,
    execute_stream_call,
)
from .envelope import CallMetadata, FullResponse, ModelCallPromise

__all__ = [
    # Entry points
    "execute_call", "execute_stream_call", "CallExecution", "classify_provider_error",
    # Attempt outcomes
    "AttemptOutcome", "Success", "RetryableFailure", "FatalFailure", "Cancelled",
    # Results
    "ModelCallPromise", "FullResponse", "CallMetadata",
]
