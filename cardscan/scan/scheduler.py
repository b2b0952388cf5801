"""Timer abstraction for the scan loop, so timing policy can be driven without a wall clock."""

import asyncio
import heapq
import itertools
import time
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Protocol


@dataclass
class TimerHandle:
    due: float
    callback: Callable[[], Any] = field(repr=False)
    cancelled: bool = False
    _native: Optional[asyncio.TimerHandle] = field(default=None, repr=False)

    def cancel(self):
        self.cancelled = True
        if self._native is not None:
            self._native.cancel()


class Scheduler(Protocol):
    def now(self) -> float:
        ...

    def call_later(self, delay: float, callback: Callable[[], Any]) -> TimerHandle:
        ...

    def cancel(self, handle: Optional[TimerHandle]) -> None:
        ...


class AsyncioScheduler:
    """Schedules callbacks on the running event loop."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def now(self) -> float:
        return time.monotonic()

    def call_later(self, delay: float, callback: Callable[[], Any]) -> TimerHandle:
        handle = TimerHandle(due=self.now() + max(0.0, delay), callback=callback)
        handle._native = self.loop.call_later(max(0.0, delay), self._fire, handle)
        return handle

    def cancel(self, handle: Optional[TimerHandle]) -> None:
        if handle is not None:
            handle.cancel()

    @staticmethod
    def _fire(handle: TimerHandle):
        if not handle.cancelled:
            handle.callback()


class ManualScheduler:
    """
    Deterministic scheduler for tests: time only moves when ``advance`` is called.

    Callbacks due at the same instant run in the order they were scheduled.
    """

    def __init__(self, start: float = 0.0):
        self._now = start
        self._sequence = itertools.count()
        self._queue: List[tuple] = []

    def now(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callable[[], Any]) -> TimerHandle:
        handle = TimerHandle(due=self._now + max(0.0, delay), callback=callback)
        heapq.heappush(self._queue, (handle.due, next(self._sequence), handle))
        return handle

    def cancel(self, handle: Optional[TimerHandle]) -> None:
        if handle is not None:
            handle.cancel()

    @property
    def pending(self) -> List[TimerHandle]:
        return [entry[2] for entry in sorted(self._queue) if not entry[2].cancelled]

    def advance(self, seconds: float) -> int:
        """Move time forward, running every callback that falls due; returns how many ran."""
        target = self._now + max(0.0, seconds)
        fired = 0
        while self._queue and self._queue[0][0] <= target:
            due, _, handle = heapq.heappop(self._queue)
            self._now = due
            if handle.cancelled:
                continue
            handle.callback()
            fired += 1
        self._now = target
        return fired
