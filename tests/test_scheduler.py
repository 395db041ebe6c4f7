from __future__ import annotations

import asyncio

from orchestration.scheduler import Scheduler


async def test_call_later_fires_once():
    scheduler = Scheduler()
    fired = []
    timer = scheduler.call_later(0.01, lambda: fired.append(1))

    await asyncio.sleep(0.05)

    assert fired == [1]
    assert timer.cancelled
    assert scheduler.pending == 0


async def test_cancelled_timer_never_fires():
    scheduler = Scheduler()
    fired = []
    timer = scheduler.call_later(0.01, lambda: fired.append(1))
    timer.cancel()
    timer.cancel()

    await asyncio.sleep(0.03)

    assert fired == []


async def test_call_every_repeats_until_cancelled():
    scheduler = Scheduler()
    ticks = []
    timer = scheduler.call_every(0.01, lambda: ticks.append(1))

    await asyncio.sleep(0.06)
    timer.cancel()
    seen = len(ticks)
    await asyncio.sleep(0.03)

    assert seen >= 2
    assert len(ticks) == seen


async def test_callback_errors_do_not_stop_the_interval():
    scheduler = Scheduler()
    ticks = []

    def flaky():
        ticks.append(1)
        raise ValueError("poll failed")

    timer = scheduler.call_every(0.01, flaky)
    await asyncio.sleep(0.05)
    timer.cancel()

    assert len(ticks) >= 2


async def test_spawned_task_failure_is_contained():
    scheduler = Scheduler()

    async def boom():
        raise RuntimeError("worker gone")

    task = scheduler.spawn(boom(), name="boom")
    await asyncio.sleep(0.01)

    assert task.done()
    assert scheduler.pending == 0


async def test_shutdown_cancels_everything():
    scheduler = Scheduler()
    fired = []
    scheduler.call_later(0.02, lambda: fired.append("later"))
    scheduler.call_every(0.01, lambda: fired.append("every"))
    task = scheduler.spawn(asyncio.sleep(10))

    await scheduler.shutdown()
    await asyncio.sleep(0.04)

    assert fired == []
    assert task.cancelled()
    assert scheduler.pending == 0


async def test_jitter_stays_in_range():
    scheduler = Scheduler()
    delay = await scheduler.jitter(0.0, 0.01)
    assert 0.0 <= delay <= 0.01
    assert await scheduler.jitter(0.0, 0.0) == 0.0
