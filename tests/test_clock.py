import asyncio
import time

import pytest

from pix_checkout.clock import CountdownClock
from pix_checkout.schemas import SessionStatus
from pix_checkout.state_machine import PaymentSessionMachine


async def wait_until_stopped(clock, timeout=2.0):
    async def _poll():
        while clock.running:
            await asyncio.sleep(0.005)
    await asyncio.wait_for(_poll(), timeout)


async def test_counts_down_to_zero():
    ticks = []
    clock = CountdownClock(5, on_tick=ticks.append, interval=0.05)
    clock.start()

    await wait_until_stopped(clock)

    assert ticks == [4, 3, 2, 1, 0]
    assert clock.remaining == 0


async def test_stop_releases_timer_immediately():
    ticks = []
    clock = CountdownClock(5, on_tick=ticks.append, interval=0.02)
    clock.start()
    assert clock.running

    clock.stop()
    clock.stop()
    await asyncio.sleep(0.1)

    assert ticks == []
    assert not clock.running


async def test_slow_consumer_coalesces_ticks_without_drift():
    ticks = []

    def slow_consumer(remaining):
        ticks.append(remaining)
        time.sleep(0.035)

    clock = CountdownClock(10, on_tick=slow_consumer, interval=0.01)
    started = asyncio.get_running_loop().time()
    clock.start()

    await wait_until_stopped(clock)

    assert ticks[-1] == 0
    assert len(ticks) < 10
    assert all(a > b for a, b in zip(ticks, ticks[1:]))
    assert clock.deadline == pytest.approx(started + 0.1, abs=0.01)


async def test_stop_from_within_tick():
    ticks = []

    def on_tick(remaining):
        ticks.append(remaining)
        if remaining == 3:
            clock.stop()

    clock = CountdownClock(5, on_tick=on_tick, interval=0.05)
    clock.start()

    await wait_until_stopped(clock)
    await asyncio.sleep(0.05)

    assert ticks == [4, 3]


async def test_failing_callback_keeps_clock_running():
    ticks = []

    def flaky(remaining):
        ticks.append(remaining)
        if remaining == 2:
            raise RuntimeError("consumer error")

    clock = CountdownClock(3, on_tick=flaky, interval=0.05)
    clock.start()

    await wait_until_stopped(clock)

    assert ticks == [2, 1, 0]


async def test_cannot_start_twice():
    clock = CountdownClock(3, on_tick=lambda remaining: None, interval=0.01)
    clock.start()
    try:
        with pytest.raises(RuntimeError):
            clock.start()
    finally:
        clock.stop()


def test_rejects_invalid_arguments():
    with pytest.raises(ValueError):
        CountdownClock(-1, on_tick=lambda remaining: None)
    with pytest.raises(ValueError):
        CountdownClock(10, on_tick=lambda remaining: None, interval=0)


def test_remaining_before_start_is_full_duration():
    clock = CountdownClock(600, on_tick=lambda remaining: None)
    assert clock.remaining == 600
    assert clock.deadline is None
    assert not clock.running


async def test_drives_state_machine_to_expiry(gateway, order, payer):
    def fast_clock(duration_seconds, on_tick):
        return CountdownClock(duration_seconds, on_tick=on_tick, interval=0.001)

    machine = PaymentSessionMachine(gateway, clock_factory=fast_clock)
    await machine.start(order, payer)

    async def _expired():
        while machine.status != SessionStatus.EXPIRED:
            await asyncio.sleep(0.01)

    await asyncio.wait_for(_expired(), 10)
    assert machine.session.remaining_seconds == 0
