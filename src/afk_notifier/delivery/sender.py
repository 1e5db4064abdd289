"""
Outbound delivery with rate limiting and bounded retries.

The transport is injected as a Sender: anything with an async
``send(text) -> bool``. Returning False or raising both count as a failed
attempt. DeliveryService acquires a RateLimiter token before every attempt
and backs off exponentially between attempts, up to a fixed cap. A text that
still fails is dropped and reported, never re-queued.
"""

import logging
from typing import Awaitable, Callable, Optional, Protocol, Union

from afk_notifier.core.config import DeliveryConfig
from afk_notifier.core.errors import SendFailure
from afk_notifier.core.models import DeliveryResult
from afk_notifier.delivery.rate_limiter import RateLimiter
from afk_notifier.temporal.clock import AsyncioScheduler, Scheduler

logger = logging.getLogger(__name__)


class Sender(Protocol):
    """Transport capability supplied by the host application."""

    async def send(self, text: str) -> bool:
        ...


# Plain async callables are accepted as senders too
SendCallable = Callable[[str], Awaitable[bool]]


class CallableSender:
    """Adapts ``async def send(text) -> bool`` functions to the Sender protocol."""

    def __init__(self, send_fn: SendCallable):
        self._send_fn = send_fn

    async def send(self, text: str) -> bool:
        return await self._send_fn(text)


def as_sender(sender: Union[Sender, SendCallable]) -> Sender:
    if hasattr(sender, "send"):
        return sender
    if callable(sender):
        return CallableSender(sender)
    raise TypeError(f"Expected a Sender or async callable, got {type(sender).__name__}")


class DeliveryService:
    """
    Sends text through the injected sender under rate limiting.

    Attributes:
        sender: The transport
        rate_limiter: Shared token bucket, acquired before every attempt
        max_attempts: Attempts per text before giving up
        base_delay: Backoff before the second attempt; doubles each time
        max_delay: Cap on a single backoff
        stats: Counters for health reporting

    Example:
        service = DeliveryService(sender=bot, rate_limiter=limiter)
        result = await service.deliver("Build finished")
        if not result.success:
            ...
    """

    def __init__(
        self,
        sender: Union[Sender, SendCallable],
        rate_limiter: RateLimiter,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 10.0,
        scheduler: Optional[Scheduler] = None,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.sender = as_sender(sender)
        self.rate_limiter = rate_limiter
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._scheduler = scheduler or AsyncioScheduler()
        self.stats = {
            "delivered": 0,
            "failed": 0,
            "retries": 0,
        }

    @classmethod
    def from_config(
        cls,
        sender: Union[Sender, SendCallable],
        rate_limiter: RateLimiter,
        config: DeliveryConfig,
        scheduler: Optional[Scheduler] = None,
    ) -> "DeliveryService":
        return cls(
            sender=sender,
            rate_limiter=rate_limiter,
            max_attempts=config.max_attempts,
            base_delay=config.base_delay_seconds,
            max_delay=config.max_delay_seconds,
            scheduler=scheduler,
        )

    def backoff_delay(self, attempt: int) -> float:
        """Delay after the given failed attempt (1-based)."""
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)

    async def deliver(self, text: str) -> DeliveryResult:
        """
        Send text, retrying failed attempts with exponential backoff.

        Never raises for sender failures; the outcome is in the result.

        Args:
            text: Already formatted outbound text

        Returns:
            DeliveryResult with ``success`` and the number of attempts used
        """
        last_error: Optional[BaseException] = None

        for attempt in range(1, self.max_attempts + 1):
            await self.rate_limiter.acquire()
            try:
                ok = await self.sender.send(text)
                if ok:
                    self.stats["delivered"] += 1
                    if attempt > 1:
                        logger.info(f"Delivered after {attempt} attempts")
                    return DeliveryResult(success=True, attempts=attempt, text=text)
                last_error = None
                logger.warning(f"Sender reported failure (attempt {attempt}/{self.max_attempts})")
            except Exception as e:
                last_error = e
                logger.warning(
                    f"Sender raised on attempt {attempt}/{self.max_attempts}: {e}"
                )

            if attempt < self.max_attempts:
                self.stats["retries"] += 1
                await self._scheduler.sleep(self.backoff_delay(attempt))

        self.stats["failed"] += 1
        failure = SendFailure(self.max_attempts, last_error)
        logger.error(f"{failure}. Dropping message: {text[:50]!r}")
        return DeliveryResult(
            success=False,
            attempts=self.max_attempts,
            text=text,
            error=failure,
        )
