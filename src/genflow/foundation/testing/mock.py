"""Scripted mock models for testing.

Each mock plays back a script of steps, one per provider attempt: a step is
either the raw response to return or an exception instance to raise. The
last step repeats once the script is exhausted. Every attempt is recorded.

Example:
    >>> model = MockTextModel([TransientProviderError("overloaded"), "  Hello  "])
    >>> await generate_text(model, "Hi", CallOptions(settings={"retry": retry_with_exponential_backoff(initial_delay=0)}))
    'Hello'
    >>> model.call_count
    2
"""

from __future__ import annotations

import asyncio
import copy
from collections import deque
from collections.abc import AsyncIterator, Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

from genflow.foundation.config import merge_settings
from genflow.foundation.errors import JsonValue
from genflow.model.base import JsonOrTextSelection, ModelSettings, ProviderCallOptions
from genflow.model.usage import Usage
from genflow.runtime.observability import AnyCallEvent, CallEventKind


@dataclass(slots=True)
class Invocation:
    """Record of a single provider attempt."""
    prompt: Any
    options: ProviderCallOptions
    schemas: tuple[str, ...] = ()


@dataclass(slots=True)
class _MockModel:
    script: Iterable[Any] = ()
    settings: ModelSettings = field(default_factory=ModelSettings)
    usage: Usage | None = None
    delay: float = 0.0
    provider: str = "mock"
    model_name: str | None = "mock-model"
    invocations: list[Invocation] = field(default_factory=list)
    active: int = 0
    max_active: int = 0

    def __post_init__(self) -> None:
        self.script = deque(self.script)
        if not self.script:
            raise ValueError("Mock model needs at least one scripted step")

    @property
    def call_count(self) -> int:
        return len(self.invocations)

    @property
    def called(self) -> bool:
        return self.call_count > 0

    @property
    def last_call(self) -> Invocation | None:
        return self.invocations[-1] if self.invocations else None

    @property
    def settings_for_event(self) -> dict[str, Any]:
        return self.settings.for_event()

    def assert_called(self) -> None:
        if not self.called:
            raise AssertionError("Expected model to be called")

    def assert_not_called(self) -> None:
        if self.called:
            raise AssertionError(f"Model called {self.call_count} times")

    def with_settings(self, **overrides: Any) -> Any:
        """Copy with merged settings; the copy shares script and recordings."""
        clone = copy.copy(self)
        clone.settings = merge_settings(self.settings, overrides)
        return clone

    def extract_usage(self, response: Any) -> Usage | None:
        return self.usage

    async def _play(self, prompt: Any, options: ProviderCallOptions, schemas: tuple[str, ...] = ()) -> Any:
        self.invocations.append(Invocation(prompt, options, schemas))
        script: deque[Any] = self.script  # type: ignore[assignment]
        step = script.popleft() if len(script) > 1 else script[0]
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
        finally:
            self.active -= 1
        if isinstance(step, BaseException):
            raise step
        return step


@dataclass(slots=True)
class MockTextModel(_MockModel):
    """Text capability; steps are response strings."""

    async def generate_text_response(self, prompt: Any, options: ProviderCallOptions) -> str:
        return await self._play(prompt, options)

    def extract_text(self, response: str) -> str:
        return response


class FragmentStream:
    """Delta iterator over scripted fragments; an exception fragment is raised in place."""

    def __init__(self, fragments: Sequence[str | BaseException], delay: float = 0.0) -> None:
        self._fragments = iter(fragments)
        self._delay = delay
        self.delivered: list[str] = []
        self.closed = False

    def __aiter__(self) -> FragmentStream:
        return self

    async def __anext__(self) -> str:
        if self.closed:
            raise StopAsyncIteration
        if self._delay:
            await asyncio.sleep(self._delay)
        fragment = next(self._fragments, None)
        if fragment is None:
            raise StopAsyncIteration
        if isinstance(fragment, BaseException):
            raise fragment
        self.delivered.append(fragment)
        return fragment

    async def aclose(self) -> None:
        self.closed = True


@dataclass(slots=True)
class MockStreamingTextModel(MockTextModel):
    """Text + streaming capability; steps are fragment lists.

    `generate_text_response` joins a step's fragments. Opened streams are kept
    in `streams` so tests can check what was delivered and closed.
    """

    fragment_delay: float = 0.0
    streams: list[FragmentStream] = field(default_factory=list)

    async def generate_text_response(self, prompt: Any, options: ProviderCallOptions) -> str:
        step = await self._play(prompt, options)
        return "".join(f for f in step if isinstance(f, str))

    async def generate_delta_stream_response(self, prompt: Any, options: ProviderCallOptions) -> AsyncIterator[str]:
        stream = FragmentStream(await self._play(prompt, options), self.fragment_delay)
        self.streams.append(stream)
        return stream

    def extract_text_delta(self, delta: str) -> str | None:
        return delta


@dataclass(slots=True)
class MockJsonModel(_MockModel):
    """JSON capability; steps are raw JSON values."""

    async def generate_json_response(self, prompt: Any, schema: Any, options: ProviderCallOptions) -> JsonValue:
        return await self._play(prompt, options, (schema.name,))

    def extract_json(self, response: JsonValue) -> JsonValue:
        return response


@dataclass(slots=True)
class MockJsonOrTextModel(_MockModel):
    """JSON-or-text capability.

    Steps are a JsonOrTextSelection, a ``(schema_name, value)`` pair or a
    plain string for a free-text answer.
    """

    async def generate_json_or_text_response(
        self, prompt: Any, schemas: Sequence[Any], options: ProviderCallOptions
    ) -> Any:
        return await self._play(prompt, options, tuple(s.name for s in schemas))

    def extract_json_or_text(self, response: Any) -> JsonOrTextSelection:
        match response:
            case JsonOrTextSelection():
                return response
            case str():
                return JsonOrTextSelection(None, text=response)
            case (name, value):
                return JsonOrTextSelection(name, value)
        raise TypeError(f"Unsupported scripted response: {response!r}")


@dataclass(slots=True)
class RecordingSink:
    """EventSink that keeps every event it receives."""

    events: list[AnyCallEvent] = field(default_factory=list)

    def on_event(self, event: AnyCallEvent) -> None:
        self.events.append(event)

    @property
    def kinds(self) -> list[CallEventKind]:
        return [e.kind for e in self.events]

    def of_kind(self, kind: CallEventKind) -> list[AnyCallEvent]:
        return [e for e in self.events if e.kind is kind]
