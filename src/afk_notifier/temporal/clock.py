"""
Clock and scheduler abstraction.

Every timing-dependent component (approval timeouts, batch windows, rate
limiter waits, poll delays) talks to a Scheduler instead of the event loop
directly:

1. ``now()`` returns a monotonic timestamp in seconds
2. ``schedule_after(delay, callback)`` runs a plain callback later and
   returns a cancellable handle
3. ``await sleep(delay)`` suspends the calling coroutine

AsyncioScheduler is the production implementation on top of
``loop.call_later``. ManualScheduler is a simulated clock that only moves
when told to, so timing behaviour can be tested deterministically.
"""

import asyncio
import heapq
import itertools
import logging
import time
from typing import Callable, Optional, Protocol

logger = logging.getLogger(__name__)


class TimerHandle(Protocol):
    """Handle returned by ``Scheduler.schedule_after``."""

    def cancel(self) -> None:
        ...

    def cancelled(self) -> bool:
        ...


class Scheduler(Protocol):
    """Time source and deferred-callback service."""

    def now(self) -> float:
        """Current monotonic time in seconds."""
        ...

    def schedule_after(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        """Run ``callback`` once after ``delay`` seconds."""
        ...

    async def sleep(self, delay: float) -> None:
        """Suspend the current coroutine for ``delay`` seconds."""
        ...


class AsyncioScheduler:
    """
    Scheduler backed by the running asyncio event loop.

    Args:
        loop: Loop to schedule on. Defaults to the loop running when
              ``schedule_after`` is first called.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def now(self) -> float:
        return time.monotonic()

    def schedule_after(self, delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        return self._get_loop().call_later(max(0.0, delay), callback)

    async def sleep(self, delay: float) -> None:
        await asyncio.sleep(max(0.0, delay))


class ManualTimer:
    """Timer owned by a ManualScheduler."""

    __slots__ = ("deadline", "seq", "callback", "_cancelled")

    def __init__(self, deadline: float, seq: int, callback: Callable[[], None]):
        self.deadline = deadline
        self.seq = seq
        self.callback = callback
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    def cancelled(self) -> bool:
        return self._cancelled

    def __lt__(self, other: "ManualTimer") -> bool:
        return (self.deadline, self.seq) < (other.deadline, other.seq)

    def __repr__(self) -> str:
        return f"ManualTimer(deadline={self.deadline}, cancelled={self._cancelled})"


class ManualScheduler:
    """
    Simulated clock for tests and replays.

    Time only moves through ``advance`` / ``advance_async``. Due timers fire
    in deadline order; timers with the same deadline fire in the order they
    were scheduled.

    Example:
        scheduler = ManualScheduler()
        fired = []
        scheduler.schedule_after(5, lambda: fired.append(scheduler.now()))
        scheduler.advance(5)
        assert fired == [5.0]
    """

    # Loop iterations granted to woken coroutines after each timer fires
    SETTLE_ITERATIONS = 20

    def __init__(self, start: float = 0.0):
        self._now = float(start)
        self._timers: list[ManualTimer] = []
        self._seq = itertools.count()

    def now(self) -> float:
        return self._now

    def schedule_after(self, delay: float, callback: Callable[[], None]) -> ManualTimer:
        timer = ManualTimer(self._now + max(0.0, delay), next(self._seq), callback)
        heapq.heappush(self._timers, timer)
        return timer

    async def sleep(self, delay: float) -> None:
        future = asyncio.get_running_loop().create_future()

        def _wake() -> None:
            if not future.done():
                future.set_result(None)

        timer = self.schedule_after(delay, _wake)
        try:
            await future
        except asyncio.CancelledError:
            timer.cancel()
            raise

    @property
    def pending_timers(self) -> int:
        """Number of scheduled timers that have not fired or been cancelled."""
        return sum(1 for t in self._timers if not t.cancelled())

    def _pop_due(self, target: float) -> Optional[ManualTimer]:
        while self._timers and self._timers[0].deadline <= target:
            timer = heapq.heappop(self._timers)
            if not timer.cancelled():
                return timer
        return None

    def _fire(self, timer: ManualTimer) -> None:
        self._now = max(self._now, timer.deadline)
        try:
            timer.callback()
        except Exception as e:
            logger.error(f"Error in scheduled callback {timer.callback!r}: {e}")

    def advance(self, seconds: float) -> None:
        """
        Move time forward synchronously, firing every due timer.

        Coroutines woken by the fired timers only run once the caller yields
        to the event loop; use ``advance_async`` from async tests.
        """
        if seconds < 0:
            raise ValueError("Cannot move time backwards")
        target = self._now + seconds
        while (timer := self._pop_due(target)) is not None:
            self._fire(timer)
        self._now = target

    async def advance_async(self, seconds: float) -> None:
        """
        Move time forward, letting woken coroutines run after each timer.

        Timers scheduled by those coroutines are fired too if they fall
        within the advanced span.
        """
        if seconds < 0:
            raise ValueError("Cannot move time backwards")
        target = self._now + seconds
        await self.settle()
        while (timer := self._pop_due(target)) is not None:
            self._fire(timer)
            await self.settle()
        self._now = target
        await self.settle()

    async def settle(self) -> None:
        """Yield to the event loop until woken coroutines have run."""
        for _ in range(self.SETTLE_ITERATIONS):
            await asyncio.sleep(0)
