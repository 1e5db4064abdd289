"""Shared test fixtures for afk-notifier.

Every timing-dependent component runs on a ManualScheduler here, so tests
move time explicitly instead of sleeping.
"""
from __future__ import annotations

import asyncio
from typing import Optional

import pytest

from afk_notifier.approvals.manager import ApprovalManager
from afk_notifier.delivery.message_batcher import MessageBatcher
from afk_notifier.delivery.rate_limiter import RateLimiter
from afk_notifier.delivery.sender import DeliveryService
from afk_notifier.temporal.clock import ManualScheduler


class RecordingSender:
    """Sender double that records delivered text.

    ``fail_times`` first attempts fail (return False, or raise when
    ``raise_error`` is set). Setting ``gate`` to an unset Event stalls every
    send until the event is set.
    """

    def __init__(self, fail_times: int = 0, raise_error: bool = False):
        self.fail_times = fail_times
        self.raise_error = raise_error
        self.attempts = 0
        self.sent: list[str] = []
        self.gate: Optional[asyncio.Event] = None

    async def send(self, text: str) -> bool:
        self.attempts += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.attempts <= self.fail_times:
            if self.raise_error:
                raise ConnectionError("network down")
            return False
        self.sent.append(text)
        return True


OPTIONS = [
    {"label": "Yes", "description": "Go ahead"},
    {"label": "No", "description": "Stop here"},
]


@pytest.fixture()
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture()
def sender() -> RecordingSender:
    return RecordingSender()


@pytest.fixture()
def limiter(scheduler: ManualScheduler) -> RateLimiter:
    # Generous limits so batching tests are not slowed by admission
    return RateLimiter(messages_per_minute=600, burst_size=50, scheduler=scheduler)


@pytest.fixture()
def delivery(sender: RecordingSender, limiter: RateLimiter, scheduler: ManualScheduler) -> DeliveryService:
    return DeliveryService(
        sender=sender,
        rate_limiter=limiter,
        max_attempts=3,
        base_delay=1.0,
        max_delay=10.0,
        scheduler=scheduler,
    )


@pytest.fixture()
def batcher(delivery: DeliveryService, scheduler: ManualScheduler) -> MessageBatcher:
    return MessageBatcher(delivery=delivery, window_ms=1000, max_queue_size=100, scheduler=scheduler)


@pytest.fixture()
def manager(scheduler: ManualScheduler) -> ApprovalManager:
    return ApprovalManager(timeout_seconds=5, max_concurrent=2, scheduler=scheduler)


@pytest.fixture()
def options() -> list[dict]:
    return [dict(o) for o in OPTIONS]
