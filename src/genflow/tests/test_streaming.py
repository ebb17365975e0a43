"""Tests for text streaming: fragment delivery, trimming, failures and cancellation."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator

import pytest

from genflow.foundation.context import RunContext
from genflow.foundation.errors import CancellationError, TransientProviderError
from genflow.foundation.testing import MockStreamingTextModel, MockTextModel, RecordingSink
from genflow.io.streaming import StreamState, TextStream, collect_stream
from genflow.model import CallOptions
from genflow.model.text import generate_text, stream_text
from genflow.runtime.observability import CallEventKind


async def _deltas(*items: str) -> AsyncIterator[str]:
    for item in items:
        yield item


# ═════════════════════════════════════════════════════════════════════════════
# TextStream
# ═════════════════════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_trimming_applies_only_at_boundaries() -> None:
    stream = TextStream(_deltas("  \n", "  Hello", ", ", "  ", "world", "!  ", " \n"), extract_delta=lambda d: d)
    fragments = [f async for f in stream]
    assert "".join(fragments) == "Hello,   world!"
    assert stream.state is StreamState.COMPLETE


@pytest.mark.asyncio
async def test_no_trimming_passes_fragments_through() -> None:
    stream = TextStream(_deltas(" a ", "", " b "), extract_delta=lambda d: d, trim_whitespace=False)
    assert [f async for f in stream] == [" a ", " b "]


@pytest.mark.asyncio
async def test_non_text_deltas_are_skipped() -> None:
    stream = TextStream(_deltas("a", "role-only", "b"), extract_delta=lambda d: None if d == "role-only" else d)
    assert await stream.collect() == "ab"


@pytest.mark.asyncio
async def test_stream_is_single_use() -> None:
    stream = TextStream(_deltas("a"), extract_delta=lambda d: d)
    assert await stream.collect() == "a"
    with pytest.raises(RuntimeError):
        async for _ in stream:
            pass


@pytest.mark.asyncio
async def test_collect_stream_counts_fragments() -> None:
    result = await collect_stream(TextStream(_deltas("a", "b", "c"), extract_delta=lambda d: d))
    assert result.value == "abc"
    assert result.chunks == 3
    assert result.duration_ms >= 0


@pytest.mark.asyncio
async def test_completion_callback_receives_full_text() -> None:
    seen: list[str] = []
    stream = TextStream(_deltas(" x", "y "), extract_delta=lambda d: d, on_complete=seen.append)
    await stream.collect()
    assert seen == ["xy"]


# ═════════════════════════════════════════════════════════════════════════════
# stream_text
# ═════════════════════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_streamed_text_matches_generated_text() -> None:
    fragments = ["  Hello", ", ", "world", "!  ", " "]
    model = MockStreamingTextModel([fragments])
    streamed = "".join([f async for f in await stream_text(model, "hi")])
    assert streamed == await generate_text(model, "hi") == "Hello, world!"


@pytest.mark.asyncio
async def test_stream_events_are_emitted_at_stream_end(sink: RecordingSink) -> None:
    model = MockStreamingTextModel([["a", "b"]])
    stream = await stream_text(model, "hi", CallOptions(observers=[sink]))
    assert sink.kinds == [CallEventKind.STARTED]
    assert await stream.collect() == "ab"
    assert sink.kinds == [CallEventKind.STARTED, CallEventKind.FINISHED]
    assert sink.events[-1].value == "ab"


@pytest.mark.asyncio
async def test_opening_the_stream_is_retried(fast_retry) -> None:
    model = MockStreamingTextModel([TransientProviderError("busy"), ["ok"]])
    stream = await stream_text(model, "hi", CallOptions(settings={"retry": fast_retry}))
    assert await stream.collect() == "ok"
    assert model.call_count == 2


@pytest.mark.asyncio
async def test_mid_stream_failure_follows_delivered_fragments(sink: RecordingSink, fast_retry) -> None:
    model = MockStreamingTextModel([["a", "b", TransientProviderError("connection dropped")]])
    stream = await stream_text(model, "hi", CallOptions(observers=[sink], settings={"retry": fast_retry}))
    received: list[str] = []
    with pytest.raises(TransientProviderError):
        async for fragment in stream:
            received.append(fragment)
    assert received == ["a", "b"]
    assert stream.state is StreamState.ERROR
    assert model.call_count == 1
    assert model.streams[0].closed
    assert sink.kinds == [CallEventKind.STARTED, CallEventKind.FAILED]


@pytest.mark.asyncio
async def test_raw_mid_stream_failure_is_classified() -> None:
    model = MockStreamingTextModel([["a", ConnectionError("reset by peer")]])
    stream = await stream_text(model, "hi")
    with pytest.raises(TransientProviderError) as exc_info:
        await stream.collect()
    assert isinstance(exc_info.value.__cause__, ConnectionError)


@pytest.mark.asyncio
async def test_cancellation_mid_stream_closes_transport(sink: RecordingSink) -> None:
    model = MockStreamingTextModel([["one", " two", " three", " four"]], fragment_delay=0.01)
    run = RunContext(observers=[sink])
    stream = await stream_text(model, "hi", CallOptions(run=run))
    received: list[str] = []
    with pytest.raises(CancellationError):
        async for fragment in stream:
            received.append(fragment)
            run.cancel("enough")
    assert received == ["one"]
    assert stream.state is StreamState.CANCELLED
    assert model.streams[0].closed
    failed = sink.events[-1]
    assert failed.kind is CallEventKind.FAILED
    assert failed.cancelled


@pytest.mark.asyncio
async def test_cancellation_during_slow_read(sink: RecordingSink) -> None:
    model = MockStreamingTextModel([["first", "never"]], fragment_delay=0.0)
    run = RunContext(observers=[sink])
    stream = await stream_text(model, "hi", CallOptions(run=run))
    model.streams[0]._delay = 10.0
    asyncio.get_running_loop().call_later(0.02, run.cancel)
    with pytest.raises(CancellationError):
        await stream.collect()
    assert model.streams[0].delivered == []
    assert sink.events[-1].cancelled


@pytest.mark.asyncio
async def test_consumer_close_reports_cancelled_failure(sink: RecordingSink) -> None:
    model = MockStreamingTextModel([["a", "b", "c"]])
    stream = await stream_text(model, "hi", CallOptions(observers=[sink]))
    async for fragment in stream:
        assert fragment == "a"
        break
    await stream.aclose()
    assert stream.state is StreamState.CLOSED
    assert model.streams[0].closed
    assert sink.kinds == [CallEventKind.STARTED, CallEventKind.FAILED]
    assert sink.events[-1].cancelled


def test_stream_text_requires_streaming_capability() -> None:
    with pytest.raises(TypeError, match="text-stream"):
        stream_text(MockTextModel(["x"]), "hi")
