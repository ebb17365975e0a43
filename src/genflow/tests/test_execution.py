"""Tests for the call executor: promises, events, settings resolution and metadata."""

from __future__ import annotations

import asyncio

import pytest
from pydantic import ValidationError

from genflow.foundation.context import RunContext
from genflow.foundation.errors import CancellationError, FatalProviderError, TransientProviderError
from genflow.foundation.testing import MockTextModel, RecordingSink
from genflow.model import CallOptions, ModelSettings, Usage
from genflow.model.text import TEXT_GENERATION, generate_text
from genflow.runtime.execution import (
    Cancelled,
    FatalFailure,
    RetryableFailure,
    Success,
    classify_provider_error,
)
from genflow.runtime.observability import CallbackSink, CallEventKind, CallFailedEvent, CallFinishedEvent


# ═════════════════════════════════════════════════════════════════════════════
# Promises
# ═════════════════════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_promise_is_lazy() -> None:
    model = MockTextModel(["hello"])
    promise = generate_text(model, "hi")
    await asyncio.sleep(0.01)
    assert not promise.started
    model.assert_not_called()
    assert await promise == "hello"
    assert promise.done()


@pytest.mark.asyncio
async def test_value_and_full_response_share_one_provider_call() -> None:
    usage = Usage(prompt_tokens=5, completion_tokens=7)
    model = MockTextModel(["  Hello world  "], usage=usage)
    promise = generate_text(model, "hi")

    text = await promise
    full = await promise.as_full_response()

    assert text == "Hello world"
    assert full.value == text
    assert full.response == "  Hello world  "
    assert full.usage == usage
    assert full.usage.total_tokens == 12
    assert model.call_count == 1


@pytest.mark.asyncio
async def test_concurrent_awaits_share_one_call() -> None:
    model = MockTextModel(["x"], delay=0.02)
    promise = generate_text(model, "hi")
    results = await asyncio.gather(promise.value(), promise.value(), promise.as_full_response())
    assert results[0] == results[1] == "x"
    assert model.call_count == 1


@pytest.mark.asyncio
async def test_cancelling_one_awaiter_leaves_the_call_to_the_others(sink: RecordingSink) -> None:
    model = MockTextModel(["hello"], delay=0.05)
    promise = generate_text(model, "hi", CallOptions(observers=[sink]))
    first = asyncio.ensure_future(promise.value())
    second = asyncio.ensure_future(promise.as_full_response())
    await asyncio.sleep(0.01)
    first.cancel()
    full = await second
    assert full.value == "hello"
    assert first.cancelled()
    assert model.call_count == 1
    assert sink.kinds == [CallEventKind.STARTED, CallEventKind.FINISHED]


@pytest.mark.asyncio
async def test_cancelling_every_awaiter_cancels_the_call(sink: RecordingSink) -> None:
    model = MockTextModel(["slow"], delay=10.0)
    promise = generate_text(model, "hi", CallOptions(observers=[sink]))
    waiters = [asyncio.ensure_future(promise.value()) for _ in range(2)]
    await asyncio.sleep(0.02)
    for waiter in waiters:
        waiter.cancel()
    await asyncio.gather(*waiters, return_exceptions=True)
    assert promise.done()
    assert sink.kinds == [CallEventKind.STARTED, CallEventKind.FAILED]
    assert sink.events[-1].cancelled


@pytest.mark.asyncio
async def test_failure_is_memoised() -> None:
    model = MockTextModel([FatalProviderError("bad"), "unused"])
    promise = generate_text(model, "hi")
    with pytest.raises(FatalProviderError):
        await promise
    with pytest.raises(FatalProviderError):
        await promise.as_full_response()
    assert model.call_count == 1


@pytest.mark.asyncio
async def test_map_derives_value_without_new_call() -> None:
    model = MockTextModel(["hello"])
    promise = generate_text(model, "hi")
    upper = promise.map(str.upper)
    assert await upper == "HELLO"
    assert await promise == "hello"
    assert model.call_count == 1


# ═════════════════════════════════════════════════════════════════════════════
# Metadata
# ═════════════════════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_metadata_describes_the_call(fast_retry) -> None:
    model = MockTextModel([TransientProviderError("busy"), "ok"])
    run = RunContext(function_id="story")
    full = await generate_text(model, "hi", CallOptions(run=run, settings={"retry": fast_retry})).as_full_response()
    meta = full.metadata
    assert meta.call_id == run.call_id
    assert meta.function_id == "story"
    assert meta.function_type == TEXT_GENERATION
    assert meta.attempts == 2
    assert meta.model.provider == "mock"
    assert meta.model.model_name == "mock-model"
    assert meta.finished_at >= meta.started_at
    assert meta.duration_ms >= 0


@pytest.mark.asyncio
async def test_call_function_id_overrides_run_label() -> None:
    model = MockTextModel(["ok"])
    run = RunContext(function_id="outer")
    full = await generate_text(model, "hi", CallOptions(run=run, function_id="inner")).as_full_response()
    assert full.metadata.function_id == "inner"
    assert model.last_call.options.function_id == "inner"


# ═════════════════════════════════════════════════════════════════════════════
# Lifecycle Events
# ═════════════════════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_successful_call_emits_started_then_finished(sink: RecordingSink) -> None:
    model = MockTextModel(["hello"], usage=Usage(prompt_tokens=1, completion_tokens=2))
    run = RunContext(function_id="greet", user_id="u-1", observers=[sink])
    await generate_text(model, "hi", CallOptions(run=run))

    assert sink.kinds == [CallEventKind.STARTED, CallEventKind.FINISHED]
    started, finished = sink.events
    assert started.call_id == finished.call_id == run.call_id
    assert started.input == "hi"
    assert started.user_id == "u-1"
    assert isinstance(finished, CallFinishedEvent)
    assert finished.value == "hello"
    assert finished.usage.total_tokens == 3
    assert finished.finished_at >= finished.started_at


@pytest.mark.asyncio
async def test_failed_call_emits_single_failed_event(sink: RecordingSink, fast_retry) -> None:
    model = MockTextModel([TransientProviderError("busy")])
    with pytest.raises(TransientProviderError):
        await generate_text(model, "hi", CallOptions(observers=[sink], settings={"retry": fast_retry}))
    assert sink.kinds == [CallEventKind.STARTED, CallEventKind.FAILED]
    failed = sink.events[-1]
    assert isinstance(failed, CallFailedEvent)
    assert not failed.cancelled
    assert failed.error.attempts == 3


@pytest.mark.asyncio
async def test_sinks_from_run_model_and_call_all_receive_events() -> None:
    run_sink, model_sink, call_sink = RecordingSink(), RecordingSink(), RecordingSink()
    model = MockTextModel(["ok"], settings=ModelSettings(observers=(model_sink,)))
    await generate_text(model, "hi", CallOptions(run=RunContext(observers=[run_sink]), observers=[call_sink]))
    for s in (run_sink, model_sink, call_sink):
        assert s.kinds == [CallEventKind.STARTED, CallEventKind.FINISHED]


@pytest.mark.asyncio
async def test_failing_sink_does_not_affect_the_call(sink: RecordingSink) -> None:
    def explode(event: object) -> None:
        raise RuntimeError("sink broke")

    model = MockTextModel(["ok"])
    text = await generate_text(model, "hi", CallOptions(observers=[CallbackSink(explode), sink]))
    assert text == "ok"
    assert sink.kinds == [CallEventKind.STARTED, CallEventKind.FINISHED]


@pytest.mark.asyncio
async def test_task_cancellation_emits_cancelled_failure(sink: RecordingSink) -> None:
    model = MockTextModel(["slow"], delay=10.0)
    task = asyncio.create_task(generate_text(model, "hi", CallOptions(observers=[sink])).value())
    await asyncio.sleep(0.02)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert sink.kinds == [CallEventKind.STARTED, CallEventKind.FAILED]
    assert sink.events[-1].cancelled


@pytest.mark.asyncio
async def test_run_cancellation_aborts_in_flight_attempt(sink: RecordingSink) -> None:
    model = MockTextModel(["slow"], delay=10.0)
    run = RunContext(observers=[sink])
    asyncio.get_running_loop().call_later(0.02, run.cancel, "stop")
    with pytest.raises(CancellationError):
        await generate_text(model, "hi", CallOptions(run=run))
    assert model.active == 0
    assert sink.events[-1].cancelled


# ═════════════════════════════════════════════════════════════════════════════
# Settings Resolution
# ═════════════════════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_call_settings_override_model_settings_field_by_field() -> None:
    model = MockTextModel(["  padded  "], settings=ModelSettings(trim_whitespace=False, max_completion_tokens=100))
    text = await generate_text(model, "hi", CallOptions(settings={"max_completion_tokens": 5}))
    assert text == "  padded  "
    effective = model.last_call.options.settings
    assert effective.max_completion_tokens == 5
    assert effective.trim_whitespace is False
    assert model.settings.max_completion_tokens == 100


@pytest.mark.asyncio
async def test_with_settings_returns_independent_copy() -> None:
    model = MockTextModel(["  hi  "])
    raw = model.with_settings(trim_whitespace=False)
    assert await generate_text(raw, "x") == "  hi  "
    assert await generate_text(model, "x") == "hi"
    assert model.settings.trim_whitespace is True


@pytest.mark.asyncio
async def test_invalid_override_surfaces_from_await() -> None:
    model = MockTextModel(["ok"])
    promise = generate_text(model, "hi", CallOptions(settings={"max_completion_tokens": -1}))
    with pytest.raises(ValidationError):
        await promise
    model.assert_not_called()


@pytest.mark.asyncio
async def test_user_id_forwarded_only_when_enabled() -> None:
    model = MockTextModel(["ok"])
    run = RunContext(user_id="user-42")

    await generate_text(model, "hi", CallOptions(run=run))
    assert model.last_call.options.user_id is None

    await generate_text(model, "hi", CallOptions(run=run, settings={"user_id_forwarding": True}))
    assert model.last_call.options.user_id == "user-42"


@pytest.mark.asyncio
async def test_settings_in_events_exclude_policies(sink: RecordingSink, fast_retry) -> None:
    model = MockTextModel(["ok"], settings=ModelSettings(max_completion_tokens=10, retry=fast_retry))
    await generate_text(model, "hi", CallOptions(observers=[sink]))
    settings = sink.events[0].model.settings
    assert settings["max_completion_tokens"] == 10
    assert "retry" not in settings
    assert "observers" not in settings


def test_missing_capability_is_rejected_synchronously() -> None:
    with pytest.raises(TypeError, match="text"):
        generate_text(object(), "hi")  # type: ignore[arg-type]


# ═════════════════════════════════════════════════════════════════════════════
# Error Classification
# ═════════════════════════════════════════════════════════════════════════════


def test_classify_provider_error_passes_genflow_errors_through() -> None:
    error = FatalProviderError("x")
    assert classify_provider_error(object(), error) is error


def test_classify_provider_error_uses_pattern_fallback() -> None:
    error = classify_provider_error(object(), TimeoutError("slow"))
    assert isinstance(error, TransientProviderError)
    assert isinstance(error.__cause__, TimeoutError)

    fatal = classify_provider_error(object(), ValueError("weird"))
    assert isinstance(fatal, FatalProviderError)


def test_outcome_types_are_distinct() -> None:
    outcomes = [
        Success("v", "raw", None),
        RetryableFailure(TransientProviderError("t")),
        FatalFailure(FatalProviderError("f")),
        Cancelled(CancellationError()),
    ]
    assert len({type(o) for o in outcomes}) == 4
