import asyncio

from afk_notifier.core.errors import SendFailure
from afk_notifier.delivery.rate_limiter import RateLimiter
from afk_notifier.delivery.sender import DeliveryService
from afk_notifier.temporal.clock import ManualScheduler

from conftest import RecordingSender


def make_service(
    scheduler: ManualScheduler,
    sender: RecordingSender,
    max_attempts: int = 3,
    limiter: RateLimiter | None = None,
) -> DeliveryService:
    return DeliveryService(
        sender=sender,
        rate_limiter=limiter or RateLimiter(600, 50, scheduler=scheduler),
        max_attempts=max_attempts,
        base_delay=1.0,
        max_delay=3.0,
        scheduler=scheduler,
    )


async def test_successful_send_uses_one_attempt(scheduler: ManualScheduler) -> None:
    sender = RecordingSender()
    service = make_service(scheduler, sender)

    result = await service.deliver("hello")

    assert result.success is True
    assert result.attempts == 1
    assert sender.sent == ["hello"]
    assert service.stats["delivered"] == 1


async def test_failed_attempts_are_retried_with_backoff(scheduler: ManualScheduler) -> None:
    sender = RecordingSender(fail_times=2)
    service = make_service(scheduler, sender)

    task = asyncio.create_task(service.deliver("retry me"))
    await scheduler.advance_async(0.9)
    assert sender.attempts == 1

    await scheduler.advance_async(0.1)  # 1s backoff after first failure
    assert sender.attempts == 2

    await scheduler.advance_async(2.0)  # 2s backoff after second failure
    result = await task

    assert result.success is True
    assert result.attempts == 3
    assert sender.sent == ["retry me"]
    assert service.stats["retries"] == 2


async def test_gives_up_after_max_attempts(scheduler: ManualScheduler) -> None:
    sender = RecordingSender(fail_times=10, raise_error=True)
    service = make_service(scheduler, sender, max_attempts=3)

    task = asyncio.create_task(service.deliver("doomed"))
    await scheduler.advance_async(60)
    result = await task

    assert result.success is False
    assert result.attempts == 3
    assert sender.attempts == 3
    assert isinstance(result.error, SendFailure)
    assert isinstance(result.error.cause, ConnectionError)
    assert service.stats["failed"] == 1


def test_backoff_is_capped(scheduler: ManualScheduler) -> None:
    service = make_service(scheduler, RecordingSender())
    assert [service.backoff_delay(n) for n in range(1, 5)] == [1.0, 2.0, 3.0, 3.0]


async def test_every_attempt_acquires_a_token(scheduler: ManualScheduler) -> None:
    limiter = RateLimiter(messages_per_minute=60, burst_size=5, scheduler=scheduler)
    sender = RecordingSender(fail_times=1)
    service = make_service(scheduler, sender, limiter=limiter)

    task = asyncio.create_task(service.deliver("x"))
    await scheduler.advance_async(1)
    await task

    # Two attempts took two tokens; one second of refill gave one back
    assert limiter.tokens == 4.0


async def test_plain_async_function_is_accepted_as_sender(scheduler: ManualScheduler) -> None:
    received = []

    async def send(text: str) -> bool:
        received.append(text)
        return True

    service = DeliveryService(send, RateLimiter(60, 1, scheduler=scheduler), scheduler=scheduler)
    result = await service.deliver("fn")

    assert result.success
    assert received == ["fn"]
