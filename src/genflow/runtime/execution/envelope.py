"""Call results: lazily started, memoised promises and full responses.

A ModelCallPromise wraps one logical model call. Nothing happens until it is
first awaited; the provider is then invoked once and the outcome is shared
by every later await, whether the caller asks for the bare value or the
full response.

Example:
    >>> promise = generate_text(model, "Write a haiku")
    >>> text = await promise
    >>> full = await promise.as_full_response()   # no second provider call
    >>> full.usage, full.metadata.attempts
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Coroutine, Generator
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Generic, TypeVar

if TYPE_CHECKING:
    from genflow.model.usage import Usage
    from genflow.runtime.observability import ModelInfo

T = TypeVar("T")
U = TypeVar("U")


@dataclass(frozen=True, slots=True)
class CallMetadata:
    """Bookkeeping of one logical call.

    Attributes:
        call_id: Run context call id
        function_id: Caller-supplied label
        function_type: Kind of call ("text-generation", ...)
        model: Model identity with the effective (event-safe) settings
        started_at: Epoch seconds when the call started
        finished_at: Epoch seconds when the value was available
        duration_ms: Wall time of the call including retries
        attempts: Provider attempts made
    """

    call_id: str
    function_id: str | None
    function_type: str
    model: ModelInfo | None
    started_at: float
    finished_at: float
    duration_ms: float
    attempts: int


@dataclass(frozen=True, slots=True)
class FullResponse(Generic[T]):
    """Value plus the raw provider response, usage and call metadata."""

    value: T
    response: Any
    usage: Usage | None
    metadata: CallMetadata


class ModelCallPromise(Generic[T]):
    """Lazy, memoised handle to one model call.

    The underlying coroutine starts on first await and runs exactly once.
    Cancel a running call through its RunContext. Cancelling an awaiting task
    only detaches that awaiter; the call itself is cancelled once its last
    awaiter is.
    """

    __slots__ = ("_factory", "_task", "_waiters")

    def __init__(self, factory: Callable[[], Coroutine[Any, Any, FullResponse[T]]]) -> None:
        self._factory = factory
        self._task: asyncio.Future[FullResponse[T]] | None = None
        self._waiters = 0

    @property
    def started(self) -> bool:
        return self._task is not None

    def done(self) -> bool:
        return self._task is not None and self._task.done()

    def _ensure_started(self) -> asyncio.Future[FullResponse[T]]:
        if self._task is None:
            self._task = asyncio.ensure_future(self._factory())
        return self._task

    async def _await_shared(self) -> FullResponse[T]:
        task = self._ensure_started()
        self._waiters += 1
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if self._waiters == 1 and not task.done():
                task.cancel()
                await asyncio.wait([task])
            raise
        finally:
            self._waiters -= 1

    async def as_full_response(self) -> FullResponse[T]:
        """Await the call and return value, raw response, usage and metadata."""
        return await self._await_shared()

    async def value(self) -> T:
        return (await self._await_shared()).value

    def map(self, fn: Callable[[T], U]) -> ModelCallPromise[U]:
        """Derive a promise whose value is `fn(value)`; shares this call."""
        async def run() -> FullResponse[U]:
            full = await self.as_full_response()
            return FullResponse(fn(full.value), full.response, full.usage, full.metadata)

        return ModelCallPromise(run)

    def __await__(self) -> Generator[Any, None, T]:
        return self.value().__await__()

    def __repr__(self) -> str:
        state = "pending" if self._task is None else ("done" if self._task.done() else "running")
        return f"ModelCallPromise({state})"
