"""
Adaptive polling for approval responses.

Answers come from a human on another device, so they arrive late and at
unpredictable times. The poller checks quickly at first and then backs off
exponentially while the request stays pending:

    100ms -> 200ms -> 400ms -> 800ms -> 1000ms -> 1000ms ...

Each ``wait_for`` starts again from the minimum interval.
"""

import asyncio
import logging
from typing import Optional

from afk_notifier.approvals.manager import ApprovalManager
from afk_notifier.core.config import PollingConfig
from afk_notifier.core.models import PollResult, PollStatus
from afk_notifier.temporal.clock import AsyncioScheduler, Scheduler

logger = logging.getLogger(__name__)


class Backoff:
    """Doubling delay sequence for a single wait."""

    def __init__(self, min_interval: float, max_interval: float):
        self.max_interval = max_interval
        self.current = min_interval
        self.history: list[float] = []

    def next(self) -> float:
        interval = self.current
        self.current = min(self.current * 2, self.max_interval)
        self.history.append(interval)
        return interval


class AdaptivePoller:
    """
    Waits for approval requests to finish without busy polling.

    Concurrent ``wait_for`` calls on one poller each get their own backoff.

    Attributes:
        manager: ApprovalManager to poll
        min_interval: First delay between checks (seconds)
        max_interval: Cap on the delay (seconds)
    """

    def __init__(
        self,
        manager: ApprovalManager,
        min_interval: float = 0.1,
        max_interval: float = 1.0,
        scheduler: Optional[Scheduler] = None,
    ):
        if min_interval <= 0:
            raise ValueError("min_interval must be positive")
        if min_interval > max_interval:
            raise ValueError("min_interval must be <= max_interval")
        self.manager = manager
        self.min_interval = min_interval
        self.max_interval = max_interval
        self._scheduler = scheduler or AsyncioScheduler()
        # Backoff of the most recently started wait, for diagnostics
        self._last = Backoff(min_interval, max_interval)

    @classmethod
    def from_config(
        cls,
        manager: ApprovalManager,
        config: PollingConfig,
        scheduler: Optional[Scheduler] = None,
    ) -> "AdaptivePoller":
        return cls(
            manager=manager,
            min_interval=config.min_interval_ms / 1000.0,
            max_interval=config.max_interval_ms / 1000.0,
            scheduler=scheduler,
        )

    @property
    def current_interval(self) -> float:
        """Next delay of the most recently started wait."""
        return self._last.current

    @property
    def intervals(self) -> list[float]:
        """Delays used so far by the most recently started wait."""
        return list(self._last.history)

    async def wait_for(
        self,
        approval_id: str,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> PollResult:
        """
        Poll until the request is resolved, timed out, cancelled or gone.

        Args:
            approval_id: Identifier returned by create_approval
            cancel_event: Optional external signal; when set the wait stops
                          and a PENDING result is returned

        Returns:
            The first non-pending PollResult, or PENDING if cancelled
        """
        backoff = Backoff(self.min_interval, self.max_interval)
        self._last = backoff
        checks = 0

        while True:
            if cancel_event is not None and cancel_event.is_set():
                logger.debug(f"Wait for {approval_id[:8]} stopped by cancel signal")
                return PollResult(status=PollStatus.PENDING)

            result = self.manager.poll_response(approval_id)
            checks += 1
            if result.is_final:
                logger.debug(
                    f"Approval {approval_id[:8]} finished as {result.status.value} "
                    f"after {checks} check(s)"
                )
                return result

            await self._sleep(backoff.next(), cancel_event)

    async def _sleep(self, interval: float, cancel_event: Optional[asyncio.Event]) -> None:
        if cancel_event is None:
            await self._scheduler.sleep(interval)
            return

        # Wake early if the cancel signal fires during the delay
        sleeper = asyncio.ensure_future(self._scheduler.sleep(interval))
        waiter = asyncio.ensure_future(cancel_event.wait())
        try:
            await asyncio.wait({sleeper, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (sleeper, waiter):
                if not task.done():
                    task.cancel()
            await asyncio.gather(sleeper, waiter, return_exceptions=True)
