"""Cancellable timers and tracked background tasks on the running event loop."""

from __future__ import annotations

import asyncio
import random
from typing import Awaitable, Callable, Optional, Set

from loguru import logger


class TimerHandle:
    """Cancellation token for a one-shot or repeating timer."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._cancelled = False
        self._handle: Optional[asyncio.TimerHandle] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        if self._handle is not None:
            self._handle.cancel()
        if self._task is not None and not self._task.done():
            self._task.cancel()


class Scheduler:
    """
    Owns every timer and fire-and-forget task the orchestrator starts.

    Callbacks run on the event loop; exceptions raised by spawned tasks are
    logged rather than lost. ``shutdown()`` cancels whatever is still pending.
    """

    def __init__(self) -> None:
        self._tasks: Set[asyncio.Task] = set()
        self._timers: Set[TimerHandle] = set()

    def call_later(self, delay: float, callback: Callable[[], None], name: str = "timer") -> TimerHandle:
        timer = TimerHandle(name)

        def _fire() -> None:
            self._timers.discard(timer)
            if timer.cancelled:
                return
            timer._cancelled = True
            try:
                callback()
            except Exception as exc:
                logger.exception(f"Timer '{name}' callback failed: {exc}")

        timer._handle = asyncio.get_running_loop().call_later(max(0.0, delay), _fire)
        self._timers.add(timer)
        return timer

    def call_every(self, interval: float, callback: Callable[[], None], name: str = "interval") -> TimerHandle:
        timer = TimerHandle(name)

        async def _loop() -> None:
            while not timer.cancelled:
                await asyncio.sleep(interval)
                if timer.cancelled:
                    break
                try:
                    callback()
                except Exception as exc:
                    logger.exception(f"Interval '{name}' callback failed: {exc}")

        timer._task = self.spawn(_loop(), name=name)
        self._timers.add(timer)
        timer._task.add_done_callback(lambda _t: self._timers.discard(timer))
        return timer

    def spawn(self, coro: Awaitable[None], name: str = "task") -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)

        def _done(t: asyncio.Task) -> None:
            self._tasks.discard(t)
            if t.cancelled():
                return
            exc = t.exception()
            if exc is not None:
                logger.opt(exception=exc).error(f"Background task '{name}' failed: {exc}")

        task.add_done_callback(_done)
        return task

    async def sleep(self, seconds: float) -> None:
        if seconds > 0:
            await asyncio.sleep(seconds)
        else:
            await asyncio.sleep(0)

    async def jitter(self, low: float, high: float) -> float:
        """Sleep a random duration in ``[low, high]`` and return it."""
        delay = random.uniform(low, high) if high > low else max(0.0, low)
        await self.sleep(delay)
        return delay

    @property
    def pending(self) -> int:
        return len(self._tasks) + len(self._timers)

    async def shutdown(self) -> None:
        for timer in list(self._timers):
            timer.cancel()
        self._timers.clear()
        tasks = [t for t in self._tasks if not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
