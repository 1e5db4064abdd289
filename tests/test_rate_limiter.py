import asyncio

import pytest

from afk_notifier.core.config import RateLimitConfig
from afk_notifier.delivery.rate_limiter import RateLimiter
from afk_notifier.temporal.clock import ManualScheduler


def make_limiter(scheduler: ManualScheduler, per_minute: float = 60, burst: int = 2) -> RateLimiter:
    return RateLimiter(messages_per_minute=per_minute, burst_size=burst, scheduler=scheduler)


async def test_burst_is_admitted_immediately(scheduler: ManualScheduler) -> None:
    limiter = make_limiter(scheduler, burst=3)

    for _ in range(3):
        await limiter.acquire()

    assert limiter.tokens == pytest.approx(0.0)
    assert scheduler.now() == 0.0


async def test_acquire_waits_for_refill(scheduler: ManualScheduler) -> None:
    limiter = make_limiter(scheduler, per_minute=60, burst=1)
    await limiter.acquire()

    task = asyncio.create_task(limiter.acquire())
    await scheduler.advance_async(0.5)
    assert not task.done()

    await scheduler.advance_async(0.5)
    assert task.done()
    await task


async def test_waiters_are_served_in_arrival_order(scheduler: ManualScheduler) -> None:
    limiter = make_limiter(scheduler, per_minute=60, burst=1)
    await limiter.acquire()
    order = []

    async def worker(name: str) -> None:
        await limiter.acquire()
        order.append((name, scheduler.now()))

    first = asyncio.create_task(worker("first"))
    second = asyncio.create_task(worker("second"))
    await scheduler.advance_async(2)
    await asyncio.gather(first, second)

    assert order == [("first", 1.0), ("second", 2.0)]


def test_try_acquire_reports_would_block(scheduler: ManualScheduler) -> None:
    limiter = make_limiter(scheduler, burst=2)

    assert limiter.try_acquire() is True
    assert limiter.try_acquire() is True
    assert limiter.try_acquire() is False
    assert limiter.would_limit() is True

    scheduler.advance(1)
    assert limiter.would_limit() is False
    assert limiter.try_acquire() is True


def test_tokens_stay_within_bucket_bounds(scheduler: ManualScheduler) -> None:
    limiter = make_limiter(scheduler, per_minute=120, burst=3)
    seen = []
    for step in range(20):
        limiter.try_acquire()
        limiter.try_acquire()
        seen.append(limiter.tokens)
        scheduler.advance(0.25 * (step % 4))
        seen.append(limiter.tokens)

    scheduler.advance(3600)
    seen.append(limiter.tokens)

    assert all(0.0 <= t <= 3.0 for t in seen)
    assert seen[-1] == 3.0


def test_reset_refills_bucket(scheduler: ManualScheduler) -> None:
    limiter = make_limiter(scheduler, burst=2)
    limiter.try_acquire()
    limiter.try_acquire()

    limiter.reset()

    assert limiter.tokens == 2.0


def test_refill_rate_from_config(scheduler: ManualScheduler) -> None:
    limiter = RateLimiter.from_config(
        RateLimitConfig(messages_per_minute=30, burst_size=4), scheduler
    )
    assert limiter.refill_rate == pytest.approx(0.5)
    assert limiter.capacity == 4.0


@pytest.mark.parametrize("per_minute, burst", [(0, 1), (10, 0)])
def test_invalid_settings_rejected(per_minute: float, burst: int) -> None:
    with pytest.raises(ValueError):
        RateLimiter(messages_per_minute=per_minute, burst_size=burst, scheduler=ManualScheduler())
