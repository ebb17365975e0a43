"""Throttle policies gating admission of provider attempts.

A throttle hands out scoped admission tickets: `async with throttle.admit(token):`
blocks until the attempt may start and releases the slot on every exit path,
including errors and cancellation. Waiters are admitted in FIFO order. A waiter
whose run is cancelled while queued leaves the queue without consuming a slot.

Example:
    >>> shared = MaxConcurrencyThrottle(max_concurrent=2)
    >>> model = model.with_settings(throttle=shared)
    >>> # at most two attempts of this model are in flight at any time
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, AsyncContextManager, Protocol, runtime_checkable

if TYPE_CHECKING:
    from genflow.foundation.context import CancellationToken

logger = logging.getLogger("genflow.throttle")


@runtime_checkable
class ThrottlePolicy(Protocol):
    """Admission control for provider attempts."""

    def admit(self, token: CancellationToken | None = None) -> AsyncContextManager[None]:
        """Return a scoped admission ticket for one attempt."""
        ...


class UnlimitedThrottle:
    """Pass-through throttle: every attempt is admitted immediately."""

    __slots__ = ()

    @asynccontextmanager
    async def admit(self, token: CancellationToken | None = None) -> AsyncIterator[None]:
        if token is not None:
            token.raise_if_cancelled()
        yield

    def __repr__(self) -> str:
        return "UnlimitedThrottle()"


class MaxConcurrencyThrottle:
    """Bounds the number of simultaneously admitted attempts.

    On release the slot is handed directly to the oldest live waiter, so the
    active count never drops and rises again between release and wakeup.

    Args:
        max_concurrent: Maximum number of attempts in flight
    """

    __slots__ = ("max_concurrent", "_active", "_waiters")

    def __init__(self, max_concurrent: int) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")
        self.max_concurrent = max_concurrent
        self._active = 0
        self._waiters: deque[asyncio.Future[None]] = deque()

    @property
    def active(self) -> int:
        """Number of currently admitted attempts."""
        return self._active

    @property
    def queued(self) -> int:
        """Number of attempts waiting for admission."""
        return sum(1 for w in self._waiters if not w.done())

    @asynccontextmanager
    async def admit(self, token: CancellationToken | None = None) -> AsyncIterator[None]:
        await self._acquire(token)
        try:
            yield
        finally:
            self._release()

    async def _acquire(self, token: CancellationToken | None) -> None:
        if token is not None:
            token.raise_if_cancelled()
        if self._active < self.max_concurrent and not self._waiters:
            self._active += 1
            return
        fut: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiters.append(fut)
        logger.debug("Attempt queued (%d active, %d waiting)", self._active, len(self._waiters))
        try:
            await (token.guard(fut) if token is not None else fut)
        except BaseException:
            if fut.done() and not fut.cancelled():
                # Slot was handed over in the same tick as the abort: pass it on
                self._release()
            else:
                fut.cancel()
                try:
                    self._waiters.remove(fut)
                except ValueError:
                    pass
            raise

    def _release(self) -> None:
        while self._waiters:
            fut = self._waiters.popleft()
            if not fut.done():
                fut.set_result(None)
                return
        self._active -= 1

    def __repr__(self) -> str:
        return f"MaxConcurrencyThrottle(max_concurrent={self.max_concurrent})"


class RateLimitThrottle:
    """Sliding-window rate limiter that queues instead of rejecting.

    Admits at most `max_calls` attempts per `window_seconds`. Excess requests
    wait in FIFO order until the oldest admission leaves the window.

    Args:
        max_calls: Maximum admissions per window
        window_seconds: Window length in seconds
    """

    __slots__ = ("max_calls", "window_seconds", "_timestamps", "_lock")

    def __init__(self, max_calls: int, window_seconds: float) -> None:
        if max_calls < 1 or window_seconds <= 0:
            raise ValueError("max_calls must be >= 1 and window_seconds > 0")
        self.max_calls = max_calls
        self.window_seconds = window_seconds
        self._timestamps: deque[float] = deque()
        self._lock = asyncio.Lock()

    def _evict(self, now: float) -> None:
        cutoff = now - self.window_seconds
        while self._timestamps and self._timestamps[0] <= cutoff:
            self._timestamps.popleft()

    @asynccontextmanager
    async def admit(self, token: CancellationToken | None = None) -> AsyncIterator[None]:
        await self._acquire(token)
        yield

    async def _acquire(self, token: CancellationToken | None) -> None:
        # asyncio.Lock wakes waiters in FIFO order
        await (token.guard(self._lock.acquire()) if token is not None else self._lock.acquire())
        try:
            while True:
                now = time.monotonic()
                self._evict(now)
                if len(self._timestamps) < self.max_calls:
                    self._timestamps.append(now)
                    return
                delay = self._timestamps[0] + self.window_seconds - now
                logger.debug("Rate limit reached, waiting %.3fs", delay)
                await (token.sleep(delay) if token is not None else asyncio.sleep(delay))
        finally:
            self._lock.release()

    def __repr__(self) -> str:
        return f"RateLimitThrottle(max_calls={self.max_calls}, window_seconds={self.window_seconds})"


# Singleton for the default pass-through policy
UNLIMITED = UnlimitedThrottle()


def throttle_unlimited() -> UnlimitedThrottle:
    return UNLIMITED


def throttle_max_concurrency(max_concurrent: int) -> MaxConcurrencyThrottle:
    return MaxConcurrencyThrottle(max_concurrent)


def throttle_rate_limit(max_calls: int, window_seconds: float) -> RateLimitThrottle:
    return RateLimitThrottle(max_calls, window_seconds)
