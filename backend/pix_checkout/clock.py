"""
Countdown clock for the payment validity window.

Emits the remaining whole seconds once per interval. Wake-ups are scheduled
against the original start time, so a late wake-up folds the missed seconds
into a single tick instead of drifting the deadline.
"""

import asyncio
import math
from typing import Callable, Optional

import structlog

TickCallback = Callable[[int], None]

# Tolerance for event-loop timer resolution when counting elapsed intervals
_EPSILON = 1e-3


class CountdownClock:
    """
    Cancellable asyncio countdown.

    Example:
        clock = CountdownClock(600, on_tick=machine.tick)
        clock.start()
        ...
        clock.stop()
    """

    def __init__(self, duration_seconds: int, on_tick: TickCallback, interval: float = 1.0):
        if duration_seconds < 0:
            raise ValueError("duration_seconds must be non-negative")
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.duration_seconds = duration_seconds
        self.interval = interval
        self._on_tick = on_tick
        self._task: Optional[asyncio.Task] = None
        self._started_at: Optional[float] = None
        self._emitted = 0
        self._stopped = False
        self._logger = structlog.get_logger().bind(component="countdown_clock")

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done() and not self._stopped

    @property
    def deadline(self) -> Optional[float]:
        """Loop-time instant at which the countdown reaches zero"""
        if self._started_at is None:
            return None
        return self._started_at + self.duration_seconds * self.interval

    @property
    def remaining(self) -> int:
        """Whole intervals left according to the wall clock"""
        if self._started_at is None:
            return self.duration_seconds
        elapsed = asyncio.get_running_loop().time() - self._started_at
        return max(0, self.duration_seconds - self._elapsed_ticks(elapsed))

    def start(self) -> None:
        if self._task is not None:
            raise RuntimeError("Clock already started")
        loop = asyncio.get_running_loop()
        self._started_at = loop.time()
        self._task = loop.create_task(self._run())

    def stop(self) -> None:
        """Cancel the underlying timer; safe to call repeatedly or from a tick."""
        self._stopped = True
        if self._task is not None and not self._task.done():
            if self._task is not asyncio.current_task():
                self._task.cancel()

    def _elapsed_ticks(self, elapsed: float) -> int:
        return min(self.duration_seconds, math.floor(elapsed / self.interval + _EPSILON))

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        while not self._stopped and self._emitted < self.duration_seconds:
            next_at = self._started_at + (self._emitted + 1) * self.interval
            await asyncio.sleep(max(0.0, next_at - loop.time()))
            if self._stopped:
                break

            due = self._elapsed_ticks(loop.time() - self._started_at)
            if due <= self._emitted:
                continue
            if due - self._emitted > 1:
                self._logger.debug("ticks_coalesced", dropped=due - self._emitted - 1)
            self._emitted = due

            try:
                self._on_tick(self.duration_seconds - due)
            except Exception as e:
                self._logger.error("tick_callback_failed", error=str(e), exc_info=True)
