import asyncio
import time

import pytest

from timecord.lifecycle.timer_registry import TimerRegistry


class _Recorder:
    def __init__(self) -> None:
        self.calls = []
        self.fired = asyncio.Event()

    async def __call__(self, entity_id: int) -> None:
        self.calls.append(entity_id)
        self.fired.set()


@pytest.mark.asyncio
async def test_timer_fires_once_and_unregisters() -> None:
    registry = TimerRegistry("test")
    recorder = _Recorder()

    registry.arm(1, time.time() + 0.01, recorder)
    assert 1 in registry

    await asyncio.wait_for(recorder.fired.wait(), timeout=2)
    await asyncio.sleep(0)

    assert recorder.calls == [1]
    assert len(registry) == 0
    await registry.shutdown()


@pytest.mark.asyncio
async def test_past_deadline_fires_on_next_tick() -> None:
    registry = TimerRegistry("test")
    recorder = _Recorder()

    registry.arm(7, time.time() - 3600, recorder)

    await asyncio.wait_for(recorder.fired.wait(), timeout=1)
    assert recorder.calls == [7]
    await registry.shutdown()


@pytest.mark.asyncio
async def test_rearming_replaces_existing_timer() -> None:
    registry = TimerRegistry("test")
    slow = _Recorder()
    fast = _Recorder()

    registry.arm(1, time.time() + 60, slow)
    registry.arm(1, time.time() + 0.01, fast)
    assert len(registry) == 1

    await asyncio.wait_for(fast.fired.wait(), timeout=2)
    await asyncio.sleep(0.05)

    assert fast.calls == [1]
    assert slow.calls == []
    await registry.shutdown()


@pytest.mark.asyncio
async def test_cancel_prevents_firing() -> None:
    registry = TimerRegistry("test")
    recorder = _Recorder()

    registry.arm(3, time.time() + 0.05, recorder)
    assert registry.cancel(3) is True
    assert registry.cancel(3) is False
    assert not registry.pending(3)

    await asyncio.sleep(0.1)
    assert recorder.calls == []
    await registry.shutdown()


@pytest.mark.asyncio
async def test_callback_sees_its_own_timer_already_removed() -> None:
    registry = TimerRegistry("test")
    observed = []
    done = asyncio.Event()

    async def callback(entity_id: int) -> None:
        observed.append((registry.pending(entity_id), registry.cancel(entity_id)))
        done.set()

    registry.arm(5, time.time(), callback)
    await asyncio.wait_for(done.wait(), timeout=1)

    assert observed == [(False, False)]
    await registry.shutdown()


@pytest.mark.asyncio
async def test_failing_callback_is_logged_and_other_timers_still_fire() -> None:
    registry = TimerRegistry("test")
    recorder = _Recorder()

    async def broken(entity_id: int) -> None:
        raise RuntimeError("callback bug")

    registry.arm(1, time.time(), broken)
    registry.arm(2, time.time() + 0.02, recorder)

    await asyncio.wait_for(recorder.fired.wait(), timeout=2)
    assert recorder.calls == [2]
    await registry.shutdown()


@pytest.mark.asyncio
async def test_shutdown_cancels_everything() -> None:
    registry = TimerRegistry("test")
    recorder = _Recorder()

    for entity_id in range(5):
        registry.arm(entity_id, time.time() + 60, recorder)
    assert len(registry) == 5

    await registry.shutdown()

    assert len(registry) == 0
    assert recorder.calls == []


@pytest.mark.asyncio
async def test_injected_clock_decides_delay() -> None:
    now = [1000.0]
    registry = TimerRegistry("test", clock=lambda: now[0])
    recorder = _Recorder()

    # 10 seconds in the past according to the injected clock
    registry.arm(9, 990.0, recorder)

    await asyncio.wait_for(recorder.fired.wait(), timeout=1)
    assert recorder.calls == [9]
    await registry.shutdown()


@pytest.mark.asyncio
async def test_delay_is_fixed_when_armed() -> None:
    now = [1000.0]
    registry = TimerRegistry("test", clock=lambda: now[0])
    recorder = _Recorder()

    registry.arm(10, 1600.0, recorder)
    # Moving the clock before the task first runs must not shorten the wait
    now[0] += 601
    await asyncio.sleep(0.05)

    assert recorder.calls == []
    assert registry.pending(10)
    await registry.shutdown()
