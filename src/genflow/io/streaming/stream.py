"""Streaming channel for incremental text delivery.

A TextStream turns a provider's delta iterator into an ordered, finite,
single-use sequence of text fragments:

- Fragments are yielded in arrival order; joining them gives the full text.
- Whitespace trimming (when enabled) applies only at the stream boundaries:
  leading whitespace is dropped until the first visible character and
  trailing whitespace is held back until more text follows, so interior
  whitespace is never altered.
- A transport failure mid-stream is raised after the fragments already
  yielded; it is never retried.
- Cancelling the run stops fragment production, closes the transport and
  raises CancellationError.
"""

from __future__ import annotations

import time
from collections.abc import AsyncIterator
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Callable, Generic, TypeVar

from genflow.foundation.errors import CancellationError, to_provider_error

if TYPE_CHECKING:
    from genflow.foundation.context import CancellationToken

T = TypeVar("T")


class StreamState(StrEnum):
    """Stream lifecycle states."""
    PENDING = "pending"
    STREAMING = "streaming"
    COMPLETE = "complete"
    ERROR = "error"
    CANCELLED = "cancelled"
    CLOSED = "closed"


@dataclass(slots=True)
class StreamResult(Generic[T]):
    """Final result of consuming a stream.

    Attributes:
        value: Complete accumulated result
        chunks: Number of fragments consumed
        duration_ms: Total consumption time
    """
    value: T
    chunks: int
    duration_ms: float


async def collect_stream(stream: AsyncIterator[str]) -> StreamResult[str]:
    """Collect all fragments from a stream into a final result."""
    start = time.perf_counter()
    parts: list[str] = []
    async for item in stream:
        parts.append(item)
    return StreamResult(value="".join(parts), chunks=len(parts), duration_ms=(time.perf_counter() - start) * 1000)


async def _next_delta(deltas: AsyncIterator[Any]) -> tuple[bool, Any]:
    try:
        return True, await deltas.__anext__()
    except StopAsyncIteration:
        return False, None


class TextStream:
    """Single-use async iterator of text fragments from one provider response.

    Args:
        deltas: Provider delta iterator (already connected)
        extract_delta: Maps a provider delta to its text, or None for non-text deltas
        token: Run cancellation token
        trim_whitespace: Trim the stream boundaries (never interior fragments)
        on_complete: Called with the full text at normal end-of-stream
        on_error: Called with the terminal error; returns the error to raise
        classify_error: Maps a raw transport failure to the error raised

    Example:
        >>> stream = await stream_text(model, "Write a haiku")
        >>> async for fragment in stream:
        ...     print(fragment, end="")
    """

    __slots__ = (
        "_deltas", "_extract", "_token", "_trim", "_on_complete", "_on_error",
        "_classify", "_gen", "_iterated", "_parts", "state",
    )

    def __init__(
        self,
        deltas: AsyncIterator[Any],
        *,
        extract_delta: Callable[[Any], str | None],
        token: CancellationToken | None = None,
        trim_whitespace: bool = True,
        on_complete: Callable[[str], object] | None = None,
        on_error: Callable[[BaseException], BaseException] | None = None,
        classify_error: Callable[[BaseException], BaseException] = to_provider_error,
    ) -> None:
        self._deltas = deltas
        self._extract = extract_delta
        self._token = token
        self._trim = trim_whitespace
        self._on_complete = on_complete
        self._on_error = on_error
        self._classify = classify_error
        self._gen = self._fragments()
        self._iterated = False
        self._parts: list[str] = []
        self.state = StreamState.PENDING

    @property
    def text(self) -> str:
        """Text yielded so far."""
        return "".join(self._parts)

    def __aiter__(self) -> TextStream:
        if self._iterated:
            raise RuntimeError("TextStream can only be consumed once")
        self._iterated = True
        return self

    async def __anext__(self) -> str:
        return await self._gen.__anext__()

    async def aclose(self) -> None:
        """Stop consuming early and close the underlying transport."""
        self._iterated = True
        await self._gen.aclose()
        if self.state is StreamState.PENDING:
            self.state = StreamState.CLOSED
            await self._close_transport()
            self._report(CancellationError("Stream closed before consumption"))

    async def collect(self) -> str:
        """Consume the remaining stream and return the full text."""
        return (await collect_stream(self)).value

    async def _read(self) -> tuple[bool, Any]:
        if self._token is None:
            return await _next_delta(self._deltas)
        return await self._token.guard(_next_delta(self._deltas))

    async def _fragments(self) -> AsyncIterator[str]:
        self.state = StreamState.STREAMING
        pending_ws, started = "", not self._trim
        try:
            while True:
                has_more, delta = await self._read()
                if not has_more:
                    break
                if not (text := self._extract(delta)):
                    continue
                if self._trim:
                    if not started:
                        text = text.lstrip()
                        if not text:
                            continue
                        started = True
                    body = text.rstrip()
                    if not body:
                        pending_ws += text
                        continue
                    text, pending_ws = pending_ws + body, text[len(body):]
                self._parts.append(text)
                yield text
        except GeneratorExit:
            self.state = StreamState.CLOSED
            self._report(CancellationError("Stream closed by consumer"))
            raise
        except CancellationError as exc:
            self.state = StreamState.CANCELLED
            raise self._report(exc) from None
        except Exception as exc:
            self.state = StreamState.ERROR
            error = self._report(self._classify(exc))
            if error is exc:
                raise
            raise error from exc
        finally:
            await self._close_transport()
        self.state = StreamState.COMPLETE
        if self._on_complete is not None:
            self._on_complete(self.text)

    def _report(self, error: BaseException) -> BaseException:
        return self._on_error(error) if self._on_error is not None else error

    async def _close_transport(self) -> None:
        aclose = getattr(self._deltas, "aclose", None)
        if aclose is not None:
            await aclose()

    def __repr__(self) -> str:
        return f"TextStream(state={self.state.value}, fragments={len(self._parts)})"
