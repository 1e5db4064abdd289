"""
Token bucket admission control for outbound sends.

The bucket holds up to ``burst_size`` tokens and refills continuously at
``messages_per_minute / 60`` tokens per second. Each send consumes one
token. When the bucket is empty ``acquire`` suspends the caller until a
token has accrued; ``try_acquire`` reports "would block" instead.
"""

import asyncio
import logging
from typing import Optional

from afk_notifier.core.config import RateLimitConfig
from afk_notifier.temporal.clock import AsyncioScheduler, Scheduler

logger = logging.getLogger(__name__)

# Absorbs float error when a waiter wakes exactly as its token accrues
TOKEN_EPSILON = 1e-9


class RateLimiter:
    """
    Token bucket shared by every send path.

    Waiters are served in arrival order: ``acquire`` holds a lock while it
    waits for a token, so a later caller cannot take the token an earlier
    one is waiting for.

    Example:
        limiter = RateLimiter(messages_per_minute=20, burst_size=5)
        await limiter.acquire()
        await sender.send(text)
    """

    def __init__(
        self,
        messages_per_minute: float = 20,
        burst_size: int = 5,
        scheduler: Optional[Scheduler] = None,
    ):
        if messages_per_minute <= 0:
            raise ValueError("messages_per_minute must be positive")
        if burst_size < 1:
            raise ValueError("burst_size must be >= 1")

        self._scheduler = scheduler or AsyncioScheduler()
        self._capacity = float(burst_size)
        self._refill_rate = messages_per_minute / 60.0
        self._tokens = self._capacity
        self._last_refill = self._scheduler.now()
        self._lock = asyncio.Lock()

        logger.debug(
            f"RateLimiter initialized: {messages_per_minute}/min, burst={burst_size}"
        )

    @classmethod
    def from_config(cls, config: RateLimitConfig, scheduler: Optional[Scheduler] = None) -> "RateLimiter":
        return cls(
            messages_per_minute=config.messages_per_minute,
            burst_size=config.burst_size,
            scheduler=scheduler,
        )

    def _refill(self) -> None:
        now = self._scheduler.now()
        elapsed = max(0.0, now - self._last_refill)
        self._tokens = min(self._capacity, self._tokens + elapsed * self._refill_rate)
        self._last_refill = now

    def _take(self) -> bool:
        self._refill()
        if self._tokens >= 1.0 - TOKEN_EPSILON:
            self._tokens = max(0.0, self._tokens - 1.0)
            return True
        return False

    def _wait_time(self) -> float:
        """Seconds until one full token is available."""
        return max(0.0, (1.0 - self._tokens) / self._refill_rate)

    async def acquire(self) -> None:
        """Consume one token, waiting for the bucket to refill if needed."""
        async with self._lock:
            while not self._take():
                wait = self._wait_time()
                logger.debug(f"Rate limit reached, waiting {wait:.2f}s for a token")
                await self._scheduler.sleep(wait)

    def try_acquire(self) -> bool:
        """
        Consume one token without waiting.

        Returns:
            True if a token was taken, False if the caller would block
        """
        if self._lock.locked():
            # Someone is already queued for the next token
            return False
        return self._take()

    def would_limit(self) -> bool:
        """Check whether an acquire would have to wait, without consuming."""
        self._refill()
        return self._tokens < 1.0 - TOKEN_EPSILON or self._lock.locked()

    def reset(self) -> None:
        """Refill the bucket to capacity."""
        self._tokens = self._capacity
        self._last_refill = self._scheduler.now()

    @property
    def tokens(self) -> float:
        """Current token count after refill, always within [0, burst_size]."""
        self._refill()
        return self._tokens

    @property
    def capacity(self) -> float:
        return self._capacity

    @property
    def refill_rate(self) -> float:
        return self._refill_rate

    def __repr__(self) -> str:
        return (
            f"RateLimiter(capacity={self._capacity}, "
            f"refill_rate={self._refill_rate:.3f}/s, tokens={self._tokens:.2f})"
        )
