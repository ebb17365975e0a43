"""The single execution path every model call goes through.

One logical call:

1. Resolves effective settings: `merge_settings(model.settings, options.settings)`.
2. Emits a started event to the run's, the model's and the call's sinks.
3. Runs attempts. Each attempt is admitted by the throttle policy, guarded
   by the run's cancellation token and classified into an AttemptOutcome.
   Only retryable failures consult the retry policy; its delay is slept
   cancellably before the next attempt.
4. Extracts the value (and usage) from the winning response. Extraction
   errors are fatal.
5. Emits exactly one finished or failed event and returns a FullResponse,
   or raises the surfaced error annotated with attempts and elapsed time.

For streaming calls the attempts cover only opening the stream; the
terminal event is emitted when the stream ends.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeAlias, TypeVar

from genflow.foundation.config import default_retry_policy, default_throttle_policy, merge_settings
from genflow.foundation.context import RunContext
from genflow.foundation.errors import (
    CancellationError,
    ErrorCode,
    FatalProviderError,
    GenflowError,
    TransientProviderError,
    to_provider_error,
)
from genflow.io.streaming import TextStream
from genflow.model.base import CallOptions, Model, ModelSettings, ProviderCallOptions, model_info
from genflow.model.usage import Usage
from genflow.runtime.observability import (
    CallFailedEvent,
    CallFinishedEvent,
    CallStartedEvent,
    bind_context,
    emit,
)
from genflow.runtime.retry import StopRetrying

from .envelope import CallMetadata, FullResponse, ModelCallPromise

logger = logging.getLogger("genflow.retry")

R = TypeVar("R")
T = TypeVar("T")


# ─────────────────────────────────────────────────────────────────────────────
# Attempt Outcomes
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class Success(Generic[T]):
    value: T
    response: Any
    usage: Usage | None


@dataclass(frozen=True, slots=True)
class RetryableFailure:
    error: TransientProviderError


@dataclass(frozen=True, slots=True)
class FatalFailure:
    error: GenflowError


@dataclass(frozen=True, slots=True)
class Cancelled:
    error: CancellationError


AttemptOutcome: TypeAlias = Success[Any] | RetryableFailure | FatalFailure | Cancelled


def classify_provider_error(model: object, exc: BaseException) -> GenflowError:
    """Classify a raw provider exception, preferring the model's own classifier."""
    if isinstance(exc, GenflowError):
        return exc
    classify = getattr(model, "classify_error", None)
    if classify is not None:
        error = classify(exc)
        if error.__cause__ is None and error is not exc:
            error.__cause__ = exc
        return error
    return to_provider_error(exc)


def _outcome_of(error: GenflowError) -> AttemptOutcome:
    match error:
        case CancellationError():
            return Cancelled(error)
        case TransientProviderError():
            return RetryableFailure(error)
        case _:
            return FatalFailure(error)


# ─────────────────────────────────────────────────────────────────────────────
# Execution
# ─────────────────────────────────────────────────────────────────────────────


class CallExecution(Generic[R, T]):
    """State of one logical call: resolved settings, policies, sinks and timing.

    Args:
        function_type: Kind of call reported in events
        model: Model performing the call
        input: Prompt (or other input) reported in events
        produce: Performs one provider attempt
        extract_value: Maps the raw response and effective settings to the call's value
        extract_usage: Maps the raw response to token usage
        options: Caller options
    """

    def __init__(
        self,
        *,
        function_type: str,
        model: Model,
        input: object,
        produce: Callable[[ProviderCallOptions], Awaitable[R]],
        extract_value: Callable[[R, ModelSettings], T],
        extract_usage: Callable[[R], Usage | None] | None = None,
        options: CallOptions | None = None,
    ) -> None:
        options = options or CallOptions()
        self.function_type = function_type
        self.model = model
        self.input = input
        self._produce = produce
        self._extract_value = extract_value
        self._extract_usage = extract_usage
        self.run = options.run or RunContext(function_id=options.function_id)
        self.function_id = options.function_id or self.run.function_id
        self.settings = merge_settings(model.settings, options.settings)
        self.retry = self.settings.retry or default_retry_policy()
        self.throttle = self.settings.throttle or default_throttle_policy()
        self.sinks = (*self.run.observers, *self.settings.observers, *options.observers)
        self.model_info = model_info(model, self.settings)
        self.provider_options = ProviderCallOptions(
            settings=self.settings,
            run=self.run,
            function_id=self.function_id,
            user_id=self.run.user_id if self.settings.user_id_forwarding else None,
        )
        self.attempts = 0
        self.started_at = 0.0
        self._t0 = 0.0
        self._settled = False

    def _elapsed_ms(self) -> float:
        return (time.perf_counter() - self._t0) * 1000

    def _event_fields(self) -> dict[str, Any]:
        return dict(
            function_type=self.function_type,
            call_id=self.run.call_id,
            function_id=self.function_id,
            user_id=self.run.user_id,
            model=self.model_info,
            input=self.input,
            started_at=self.started_at,
        )

    def start(self) -> None:
        self.started_at, self._t0 = time.time(), time.perf_counter()
        emit(self.sinks, CallStartedEvent(**self._event_fields()))

    def metadata(self) -> CallMetadata:
        return CallMetadata(
            call_id=self.run.call_id,
            function_id=self.function_id,
            function_type=self.function_type,
            model=self.model_info,
            started_at=self.started_at,
            finished_at=time.time(),
            duration_ms=self._elapsed_ms(),
            attempts=self.attempts,
        )

    def succeed(self, value: Any, response: Any = None, usage: Usage | None = None) -> FullResponse[Any]:
        """Emit the finished event and build the full response."""
        meta = self.metadata()
        if not self._settled:
            self._settled = True
            emit(self.sinks, CallFinishedEvent(
                **self._event_fields(),
                finished_at=meta.finished_at,
                duration_ms=meta.duration_ms,
                value=value,
                usage=usage,
                response=response,
            ))
        return FullResponse(value, response, usage, meta)

    def fail(self, error: BaseException) -> BaseException:
        """Annotate the error, emit the failed event and return the error to raise."""
        elapsed = self._elapsed_ms()
        if isinstance(error, GenflowError):
            error.with_call_info(attempts=self.attempts, elapsed_ms=elapsed, function_id=self.function_id)
        if not self._settled:
            self._settled = True
            emit(self.sinks, CallFailedEvent(
                **self._event_fields(),
                finished_at=time.time(),
                duration_ms=elapsed,
                error=error,
                cancelled=isinstance(error, (CancellationError, asyncio.CancelledError)),
            ))
        return error

    async def _attempt(self) -> AttemptOutcome:
        token = self.run.token
        self.attempts += 1
        try:
            async with self.throttle.admit(token):
                response = await token.guard(self._produce(self.provider_options))
        except Exception as exc:
            return _outcome_of(classify_provider_error(self.model, exc))
        try:
            value = self._extract_value(response, self.settings)
            usage = self._extract_usage(response) if self._extract_usage is not None else None
        except GenflowError as exc:
            return FatalFailure(exc)
        except Exception as exc:
            error = FatalProviderError(f"Could not extract result: {exc}", code=ErrorCode.PARSE_ERROR)
            error.__cause__ = exc
            return FatalFailure(error)
        return Success(value, response, usage)

    async def run_attempts(self) -> AttemptOutcome:
        """Attempt until success, a non-retryable outcome or the retry policy stops."""
        with bind_context(call_id=self.run.call_id, function_id=self.function_id):
            while True:
                outcome = await self._attempt()
                if not isinstance(outcome, RetryableFailure):
                    return outcome
                decision = self.retry.should_retry(self.attempts, outcome.error)
                if isinstance(decision, StopRetrying):
                    return outcome
                logger.info(
                    "[%s] attempt %d failed (%s), retrying in %.2fs",
                    self.function_id or self.function_type, self.attempts, outcome.error.message, decision.delay,
                )
                try:
                    await self.run.token.sleep(decision.delay)
                except CancellationError as exc:
                    return Cancelled(exc)


async def _execute(execution: CallExecution[Any, T]) -> FullResponse[T]:
    execution.start()
    try:
        outcome = await execution.run_attempts()
    except asyncio.CancelledError as exc:
        execution.fail(exc)
        raise
    if isinstance(outcome, Success):
        return execution.succeed(outcome.value, outcome.response, outcome.usage)
    raise execution.fail(outcome.error)


def execute_call(
    *,
    function_type: str,
    model: Model,
    input: object,
    produce: Callable[[ProviderCallOptions], Awaitable[R]],
    extract_value: Callable[[R, ModelSettings], T],
    extract_usage: Callable[[R], Usage | None] | None = None,
    options: CallOptions | None = None,
) -> ModelCallPromise[T]:
    """Build a lazy promise for one logical call.

    Settings are resolved when the promise is first awaited, so invalid
    overrides surface from the await, not from this function.
    """
    async def runner() -> FullResponse[T]:
        return await _execute(CallExecution(
            function_type=function_type,
            model=model,
            input=input,
            produce=produce,
            extract_value=extract_value,
            extract_usage=extract_usage,
            options=options,
        ))

    return ModelCallPromise(runner)


async def _execute_stream(execution: CallExecution[Any, AsyncIterator[Any]], extract_delta: Callable[[Any], str | None]) -> FullResponse[TextStream]:
    execution.start()
    try:
        outcome = await execution.run_attempts()
    except asyncio.CancelledError as exc:
        execution.fail(exc)
        raise
    if not isinstance(outcome, Success):
        raise execution.fail(outcome.error)
    stream = TextStream(
        outcome.value,
        extract_delta=extract_delta,
        token=execution.run.token,
        trim_whitespace=execution.settings.trim_whitespace,
        on_complete=lambda text: execution.succeed(text),
        on_error=execution.fail,
        classify_error=lambda exc: classify_provider_error(execution.model, exc),
    )
    return FullResponse(stream, outcome.response, outcome.usage, execution.metadata())


def execute_stream_call(
    *,
    function_type: str,
    model: Model,
    input: object,
    open_stream: Callable[[ProviderCallOptions], Awaitable[AsyncIterator[Any]]],
    extract_delta: Callable[[Any], str | None],
    options: CallOptions | None = None,
) -> ModelCallPromise[TextStream]:
    """Build a lazy promise for a streaming call.

    Retry and throttling apply to opening the stream only. The call's
    finished or failed event is emitted when the stream ends.
    """
    async def runner() -> FullResponse[TextStream]:
        execution = CallExecution(
            function_type=function_type,
            model=model,
            input=input,
            produce=open_stream,
            extract_value=lambda deltas, _: deltas,
            options=options,
        )
        return await _execute_stream(execution, extract_delta)

    return ModelCallPromise(runner)
