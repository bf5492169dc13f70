"""Tests for the trailing-edge throttle."""

import asyncio

import pytest

from filevault.services.throttle import Throttle, throttle


class FakeClock:
    def __init__(self, now: float = 100.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.mark.asyncio
async def test_first_call_runs_immediately():
    calls = []
    throttled = throttle(calls.append, 1000, clock=FakeClock())

    throttled(1)

    assert calls == [1]
    assert not throttled.has_pending


@pytest.mark.asyncio
async def test_calls_within_window_are_coalesced_to_last_args():
    """Only the last arguments of a burst survive, delivered on the trailing edge."""
    calls = []
    throttled = Throttle(calls.append, 50)

    for i in range(10):
        throttled(i)

    assert calls == [0]
    assert throttled.has_pending

    await asyncio.sleep(0.12)

    assert calls == [0, 9]
    assert not throttled.has_pending


@pytest.mark.asyncio
async def test_at_most_one_call_per_window():
    calls = []
    clock = FakeClock()
    throttled = throttle(calls.append, 500, clock=clock)

    throttled("a")
    clock.advance(0.2)
    throttled("b")
    clock.advance(0.2)
    throttled("c")

    assert calls == ["a"]

    # Window elapsed: the next call runs immediately with its own args
    clock.advance(0.2)
    throttled("d")

    assert calls == ["a", "d"]
    throttled.cancel()


@pytest.mark.asyncio
async def test_flush_runs_pending_call_now():
    calls = []
    throttled = throttle(calls.append, 10_000)

    throttled(1)
    throttled(2)
    throttled.flush()

    assert calls == [1, 2]
    assert not throttled.has_pending


@pytest.mark.asyncio
async def test_cancel_drops_trailing_call():
    calls = []
    throttled = throttle(calls.append, 30)

    throttled(1)
    throttled(2)
    throttled.cancel()
    await asyncio.sleep(0.08)

    assert calls == [1]


@pytest.mark.asyncio
async def test_coroutine_functions_are_scheduled_and_drained():
    seen = []

    async def record(value):
        await asyncio.sleep(0)
        seen.append(value)

    throttled = throttle(record, 0)
    throttled("x")
    throttled("y")
    await throttled.drain()

    assert seen == ["x", "y"]


@pytest.mark.asyncio
async def test_failing_coroutine_is_logged_not_raised(caplog):
    async def boom(value):
        raise RuntimeError("nope")

    throttled = throttle(boom, 0)
    throttled(1)
    await throttled.drain()
    await asyncio.sleep(0)

    assert "Throttled call" in caplog.text
