"""Time sources for the scheduler, executors, and VUs.

Everything that waits in the engine goes through a clock object with
``now()`` and ``async sleep(seconds)``. ``MonotonicClock`` is the real one;
``ManualClock`` only moves when ``advance`` is called, which lets tests run
multi-minute scenarios without sleeping.
"""

import asyncio
import heapq
import itertools
import time
from typing import List, Tuple


class MonotonicClock:
    def now(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(seconds, 0.0))


class ManualClock:
    """A virtual clock advanced explicitly by the caller.

    Args:
        start: Initial reading.
        settle_passes: Event loop passes granted to woken tasks after each
            wake-up, so they can run up to their next wait before time moves on.
    """

    def __init__(self, start: float = 0.0, settle_passes: int = 25):
        self._now = start
        self._settle_passes = settle_passes
        self._sleepers: List[Tuple[float, int, asyncio.Future]] = []
        self._seq = itertools.count()

    def now(self) -> float:
        return self._now

    async def sleep(self, seconds: float) -> None:
        if seconds <= 0:
            await asyncio.sleep(0)
            return
        future = asyncio.get_running_loop().create_future()
        heapq.heappush(self._sleepers, (self._now + seconds, next(self._seq), future))
        await future

    @property
    def pending(self) -> int:
        return sum(1 for _, _, fut in self._sleepers if not fut.done())

    async def advance(self, seconds: float) -> None:
        """Move time forward, waking every sleeper whose deadline is reached."""
        target = self._now + seconds
        await self._settle()
        while self._sleepers and self._sleepers[0][0] <= target:
            deadline, _, future = heapq.heappop(self._sleepers)
            if future.done():
                continue
            self._now = max(self._now, deadline)
            future.set_result(None)
            await self._settle()
        self._now = target
        await self._settle()

    async def _settle(self) -> None:
        for _ in range(self._settle_passes):
            await asyncio.sleep(0)


async def sleep_or_stop(clock, seconds: float, stop: asyncio.Event) -> bool:
    """Sleep on ``clock`` unless ``stop`` is set first.

    Returns:
        True if the stop event was set before or during the wait.
    """
    if stop.is_set():
        return True
    if seconds <= 0:
        await asyncio.sleep(0)
        return stop.is_set()
    sleeper = asyncio.ensure_future(clock.sleep(seconds))
    stopper = asyncio.ensure_future(stop.wait())
    try:
        await asyncio.wait({sleeper, stopper}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in (sleeper, stopper):
            if not task.done():
                task.cancel()
    return stop.is_set()
