"""Run context and cooperative cancellation.

A RunContext carries the identity of one call tree (call id, function label,
optional user id) together with a CancellationToken. Nested calls share the
same token object, so cancelling the outermost context stops every descendant.

Example:
    >>> run = RunContext(function_id="summarize")
    >>> text = await generate_text(model, prompt, CallOptions(run=run))
    >>> run.cancel("user navigated away")   # from another task
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Sequence
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Callable, TypeVar

from genflow.foundation.errors import CancellationError

if TYPE_CHECKING:
    from genflow.runtime.observability import EventSink

T = TypeVar("T")

logger = logging.getLogger("genflow.context")


class CancellationToken:
    """One-shot, observable cancellation signal.

    Once cancelled, a token stays cancelled. Every blocking wait in the
    package (network attempt, backoff delay, throttle queue, stream read)
    goes through `guard` or `sleep` so it aborts promptly with
    CancellationError instead of a timeout or provider error.
    """

    __slots__ = ("_cancelled", "_reason", "_callbacks", "_event")

    def __init__(self) -> None:
        self._cancelled = False
        self._reason: object = None
        self._callbacks: list[Callable[[object], None]] = []
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> object:
        return self._reason

    def cancel(self, reason: object = None) -> None:
        """Cancel the token. Repeated calls are no-ops."""
        if self._cancelled:
            return
        self._cancelled, self._reason = True, reason
        self._event.set()
        callbacks, self._callbacks = self._callbacks, []
        for cb in callbacks:
            self._notify(cb)

    def add_callback(self, callback: Callable[[object], None]) -> Callable[[], None]:
        """Register an observer called with the reason on cancellation.

        Fires immediately when the token is already cancelled. Returns a
        function that unregisters the callback.
        """
        if self._cancelled:
            self._notify(callback)
            return lambda: None
        self._callbacks.append(callback)

        def remove() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)
        return remove

    def _notify(self, callback: Callable[[object], None]) -> None:
        try:
            callback(self._reason)
        except Exception:
            logger.warning("Cancellation callback %r raised", callback, exc_info=True)

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise CancellationError(reason=self._reason)

    async def wait(self) -> None:
        """Suspend until the token is cancelled."""
        await self._event.wait()

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await `awaitable`, aborting it if the token is cancelled first.

        When both finish in the same tick the awaitable's outcome wins.

        Raises:
            CancellationError: If the token is (or becomes) cancelled first
        """
        if self._cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise CancellationError(reason=self._reason)
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()
        if task in done:
            return task.result()
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as exc:
            raise CancellationError(reason=self._reason) from exc
        raise CancellationError(reason=self._reason)

    async def sleep(self, delay: float) -> None:
        """Cancellable sleep used for backoff and rate-limit waits."""
        self.raise_if_cancelled()
        try:
            await asyncio.wait_for(self._event.wait(), timeout=delay)
        except TimeoutError:
            return
        raise CancellationError(reason=self._reason)

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self._cancelled})"


def _new_call_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True, slots=True)
class RunContext:
    """Identity and cancellation shared across one call tree.

    Attributes:
        call_id: Unique per top-level invocation, inherited by nested calls
        function_id: Caller-supplied label
        user_id: Forwarded to providers only when a model opts in
        token: Cancellation token, shared by reference with child contexts
        observers: Event sinks receiving lifecycle events of every call in the tree
    """

    call_id: str = field(default_factory=_new_call_id)
    function_id: str | None = None
    user_id: str | None = None
    token: CancellationToken = field(default_factory=CancellationToken, compare=False)
    observers: Sequence[EventSink] = field(default=(), compare=False, repr=False)

    @property
    def cancelled(self) -> bool:
        return self.token.cancelled

    def cancel(self, reason: object = None) -> None:
        self.token.cancel(reason)

    def child(self, *, function_id: str | None = None) -> RunContext:
        """Derive a nested context: same call id, same token object."""
        return replace(self, function_id=function_id or self.function_id)
