"""
Notification Service - Wires the coordinator components together.

One instance owns one of each component, built from a NotifierConfig:

    RateLimiter -> DeliveryService -> MessageBatcher
                                   -> ApprovalManager (acknowledgements)
    ApprovalManager -> AdaptivePoller

Usage:
    from afk_notifier import NotificationService, load_config

    async def send(text: str) -> bool:
        return await bot.send_message(chat_id, text)

    service = NotificationService(sender=send, config=load_config())
    await service.start()

    await service.add("Build finished")
    approval_id = service.create_approval("Deploy?", options)
    result = await service.wait_for(approval_id)

    await service.stop()
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Optional, Sequence, Union

from rich.console import Console

from afk_notifier.approvals.manager import ApprovalManager, OptionInput, ResponseInput
from afk_notifier.approvals.poller import AdaptivePoller
from afk_notifier.core.config import NotifierConfig
from afk_notifier.core.models import DeliveryResult, MessagePriority, PollResult, SubmitResult
from afk_notifier.delivery.message_batcher import MessageBatcher
from afk_notifier.delivery.rate_limiter import RateLimiter
from afk_notifier.delivery.sender import DeliveryService, SendCallable, Sender
from afk_notifier.temporal.clock import AsyncioScheduler, Scheduler


class NotificationService:
    """
    Inbound surface of the coordinator.

    Attributes:
        config: Configuration the components were built from
        rate_limiter: Token bucket shared by every send
        delivery: Retrying send path
        batcher: Outbound message batcher
        approvals: Approval request registry
        poller: Adaptive poller over ``approvals``
        console: Rich console for lifecycle output
    """

    def __init__(
        self,
        sender: Union[Sender, SendCallable],
        config: Optional[NotifierConfig] = None,
        scheduler: Optional[Scheduler] = None,
        acknowledge_responses: bool = True,
        console: Optional[Console] = None,
    ):
        self.config = config or NotifierConfig()
        self._scheduler = scheduler or AsyncioScheduler()
        self.console = console or Console()

        self.rate_limiter = RateLimiter.from_config(self.config.rate_limiting, self._scheduler)
        self.delivery = DeliveryService.from_config(
            sender, self.rate_limiter, self.config.delivery, self._scheduler
        )
        self.batcher = MessageBatcher.from_config(
            self.delivery, self.config.batching, self._scheduler
        )
        self.approvals = ApprovalManager.from_config(
            self.config.approval,
            scheduler=self._scheduler,
            delivery=self.delivery if acknowledge_responses else None,
        )
        self.poller = AdaptivePoller.from_config(
            self.approvals, self.config.polling, self._scheduler
        )

        self._running = False
        self._started_at: Optional[datetime] = None

    async def start(self) -> None:
        """Mark the service as running. Safe to call twice."""
        if self._running:
            self.console.print("[yellow]Notification service already running[/yellow]")
            return
        self._running = True
        self._started_at = datetime.now(timezone.utc)
        self.console.print(
            f"[green]Notification service started "
            f"(rate: {self.config.rate_limiting.messages_per_minute}/min, "
            f"burst: {self.config.rate_limiting.burst_size}, "
            f"window: {self.config.batching.window_ms}ms)[/green]"
        )

    async def stop(self, flush_remaining: bool = True) -> None:
        """
        Flush queued messages, cancel pending approvals and every timer.

        Args:
            flush_remaining: Send what is still queued (True) or drop it
        """
        was_running = self._running
        self._running = False
        # Components accept work before start(), so always clean them up
        await self.batcher.close(flush_remaining=flush_remaining)
        await self.approvals.shutdown()
        if was_running:
            self.console.print("[green]Notification service stopped[/green]")
        else:
            self.console.print("[yellow]Notification service not running, timers cleared[/yellow]")

    async def __aenter__(self) -> "NotificationService":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()

    # --- outbound messages ---

    async def add(
        self,
        text: str,
        priority: Union[str, MessagePriority] = MessagePriority.NORMAL,
    ) -> Optional[DeliveryResult]:
        return await self.batcher.add(text, priority)

    async def flush(self) -> Optional[DeliveryResult]:
        return await self.batcher.flush()

    # --- approvals ---

    def create_approval(
        self,
        question: str,
        options: Sequence[OptionInput],
        header: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ) -> str:
        return self.approvals.create_approval(question, options, header, timeout_seconds)

    def submit_response(self, approval_id: str, response: ResponseInput) -> SubmitResult:
        return self.approvals.submit_response(approval_id, response)

    def poll_response(self, approval_id: str) -> PollResult:
        return self.approvals.poll_response(approval_id)

    def cancel(self, approval_id: str) -> bool:
        return self.approvals.cancel(approval_id)

    async def wait_for(
        self,
        approval_id: str,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> PollResult:
        """Wait for an approval with adaptive backoff between checks."""
        return await self.poller.wait_for(approval_id, cancel_event)

    def health_check(self) -> dict:
        """
        Get service health status.

        Returns:
            Dictionary with running state, uptime, component counters and the
            active configuration
        """
        uptime = None
        if self._running and self._started_at:
            uptime = (datetime.now(timezone.utc) - self._started_at).total_seconds()

        return {
            "running": self._running,
            "uptime_seconds": uptime,
            "approvals": {
                **self.approvals.stats,
                "pending": self.approvals.pending_count,
                "uncollected": self.approvals.uncollected_count,
            },
            "batching": {
                **self.batcher.stats,
                "queued": self.batcher.queue_size,
            },
            "delivery": dict(self.delivery.stats),
            "rate_limiting": {
                "tokens": round(self.rate_limiter.tokens, 3),
                "capacity": self.rate_limiter.capacity,
            },
            "config": self.config.model_dump(),
        }

    @property
    def is_running(self) -> bool:
        return self._running
