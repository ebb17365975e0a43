"""Tests for throttle policies and their use by the call executor."""

from __future__ import annotations

import asyncio
import time

import pytest

from genflow.foundation.config import clear_settings_cache, default_throttle_policy
from genflow.foundation.context import CancellationToken
from genflow.foundation.errors import CancellationError
from genflow.foundation.testing import MockTextModel
from genflow.model import CallOptions, ModelSettings
from genflow.model.text import generate_text
from genflow.runtime.throttle import (
    UNLIMITED,
    MaxConcurrencyThrottle,
    RateLimitThrottle,
    UnlimitedThrottle,
    throttle_max_concurrency,
    throttle_rate_limit,
    throttle_unlimited,
)


# ═════════════════════════════════════════════════════════════════════════════
# Max Concurrency
# ═════════════════════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_concurrency_never_exceeds_limit() -> None:
    throttle = throttle_max_concurrency(2)
    model = MockTextModel(["ok"], delay=0.03, settings=ModelSettings(throttle=throttle))
    results = await asyncio.gather(*(generate_text(model, f"p{i}").value() for i in range(6)))
    assert results == ["ok"] * 6
    assert model.max_active == 2
    assert throttle.active == 0


@pytest.mark.asyncio
async def test_waiters_are_admitted_in_fifo_order() -> None:
    throttle = MaxConcurrencyThrottle(1)
    release = asyncio.Event()
    order: list[str] = []

    async def holder() -> None:
        async with throttle.admit():
            await release.wait()

    async def waiter(name: str) -> None:
        async with throttle.admit():
            order.append(name)
            await asyncio.sleep(0)

    held = asyncio.create_task(holder())
    await asyncio.sleep(0)
    waiters = [asyncio.create_task(waiter(name)) for name in ("a", "b", "c")]
    await asyncio.sleep(0)
    assert throttle.queued == 3
    release.set()
    await asyncio.gather(held, *waiters)
    assert order == ["a", "b", "c"]
    assert throttle.active == 0


@pytest.mark.asyncio
async def test_cancelled_waiter_leaves_queue_without_taking_a_slot() -> None:
    throttle = MaxConcurrencyThrottle(1)
    release = asyncio.Event()
    order: list[str] = []
    tokens = {name: CancellationToken() for name in ("a", "b", "c")}

    async def holder() -> None:
        async with throttle.admit():
            await release.wait()

    async def waiter(name: str) -> None:
        async with throttle.admit(tokens[name]):
            order.append(name)

    held = asyncio.create_task(holder())
    await asyncio.sleep(0)
    waiters = {name: asyncio.create_task(waiter(name)) for name in tokens}
    await asyncio.sleep(0)
    tokens["b"].cancel()
    with pytest.raises(CancellationError):
        await waiters["b"]
    assert throttle.queued == 2
    release.set()
    await asyncio.gather(held, waiters["a"], waiters["c"])
    assert order == ["a", "c"]
    assert throttle.active == 0


@pytest.mark.asyncio
async def test_slot_is_released_when_attempt_fails() -> None:
    throttle = MaxConcurrencyThrottle(1)
    with pytest.raises(RuntimeError):
        async with throttle.admit():
            raise RuntimeError("attempt failed")
    assert throttle.active == 0
    async with throttle.admit():
        assert throttle.active == 1


@pytest.mark.asyncio
async def test_cancelled_token_is_rejected_before_queueing() -> None:
    throttle = MaxConcurrencyThrottle(1)
    token = CancellationToken()
    token.cancel()
    with pytest.raises(CancellationError):
        async with throttle.admit(token):
            pass
    assert throttle.active == 0


def test_max_concurrency_validation() -> None:
    with pytest.raises(ValueError):
        MaxConcurrencyThrottle(0)


# ═════════════════════════════════════════════════════════════════════════════
# Rate Limit
# ═════════════════════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_rate_limit_delays_excess_admissions() -> None:
    throttle = RateLimitThrottle(max_calls=2, window_seconds=0.1)
    start = time.perf_counter()
    stamps: list[float] = []
    for _ in range(3):
        async with throttle.admit():
            stamps.append(time.perf_counter() - start)
    assert stamps[1] < 0.05
    assert stamps[2] >= 0.09


@pytest.mark.asyncio
async def test_rate_limit_wait_is_cancellable() -> None:
    throttle = RateLimitThrottle(max_calls=1, window_seconds=10.0)
    async with throttle.admit():
        pass
    token = CancellationToken()
    asyncio.get_running_loop().call_later(0.02, token.cancel)
    start = time.perf_counter()
    with pytest.raises(CancellationError):
        async with throttle.admit(token):
            pass
    assert time.perf_counter() - start < 1.0


def test_rate_limit_validation() -> None:
    with pytest.raises(ValueError):
        RateLimitThrottle(max_calls=0, window_seconds=1.0)
    with pytest.raises(ValueError):
        RateLimitThrottle(max_calls=1, window_seconds=0)


# ═════════════════════════════════════════════════════════════════════════════
# Defaults
# ═════════════════════════════════════════════════════════════════════════════


def test_unlimited_is_a_singleton() -> None:
    assert throttle_unlimited() is UNLIMITED


def test_default_throttle_follows_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    assert isinstance(default_throttle_policy(), UnlimitedThrottle)

    monkeypatch.setenv("GENFLOW_THROTTLE_MAX_CONCURRENT", "3")
    clear_settings_cache()
    policy = default_throttle_policy()
    assert isinstance(policy, MaxConcurrencyThrottle)
    assert policy.max_concurrent == 3
    assert default_throttle_policy() is policy

    monkeypatch.delenv("GENFLOW_THROTTLE_MAX_CONCURRENT")
    monkeypatch.setenv("GENFLOW_THROTTLE_MAX_CALLS", "10")
    monkeypatch.setenv("GENFLOW_THROTTLE_WINDOW_SECONDS", "1.5")
    clear_settings_cache()
    rate = default_throttle_policy()
    assert isinstance(rate, RateLimitThrottle)
    assert (rate.max_calls, rate.window_seconds) == (10, 1.5)


@pytest.mark.asyncio
async def test_call_options_can_override_throttle() -> None:
    throttle = throttle_rate_limit(100, 1.0)
    model = MockTextModel(["ok"])
    await generate_text(model, "hi", CallOptions(settings={"throttle": throttle}))
    assert len(throttle._timestamps) == 1
