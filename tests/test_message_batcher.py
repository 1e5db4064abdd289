import asyncio

import pytest

from afk_notifier.core.errors import NotifierError, ValidationError
from afk_notifier.core.models import MessagePriority
from afk_notifier.delivery.message_batcher import BATCH_SEPARATOR, MessageBatcher
from afk_notifier.delivery.sender import DeliveryService
from afk_notifier.temporal.clock import ManualScheduler

from conftest import RecordingSender


async def test_normal_messages_are_batched(batcher: MessageBatcher, sender: RecordingSender) -> None:
    await batcher.add("Message 1", "normal")
    await batcher.add("Message 2", "normal")

    assert batcher.queue_size == 2
    assert sender.sent == []
    assert batcher.timer_active


async def test_single_window_timer(batcher: MessageBatcher, scheduler: ManualScheduler) -> None:
    await batcher.add("Message 1")
    await batcher.add("Message 2")

    assert scheduler.pending_timers == 1


async def test_window_timer_flushes_combined_batch(
    batcher: MessageBatcher, sender: RecordingSender, scheduler: ManualScheduler
) -> None:
    await batcher.add("First")
    await batcher.add("Second")

    await scheduler.advance_async(1.0)

    assert batcher.queue_size == 0
    assert sender.sent == [f"📬 2 updates\n\nFirst{BATCH_SEPARATOR}Second"]
    assert not batcher.timer_active


async def test_single_message_is_sent_verbatim(batcher: MessageBatcher, sender: RecordingSender) -> None:
    await batcher.add("Single message")

    result = await batcher.flush()

    assert result is not None and result.success
    assert sender.sent == ["Single message"]
    assert not batcher.timer_active


async def test_empty_flush_is_noop(batcher: MessageBatcher, sender: RecordingSender) -> None:
    assert await batcher.flush() is None
    assert sender.attempts == 0


async def test_high_priority_flushes_everything_in_order(
    batcher: MessageBatcher, sender: RecordingSender
) -> None:
    await batcher.add("one")
    await batcher.add("two", MessagePriority.LOW)

    result = await batcher.add("urgent", "high")

    assert result is not None and result.success
    assert batcher.queue_size == 0
    assert not batcher.timer_active
    assert len(sender.sent) == 1
    sent = sender.sent[0]
    assert sent.startswith("📬 3 updates")
    assert sent.index("one") < sent.index("two") < sent.index("urgent")


async def test_high_priority_alone_does_not_arm_timer(
    batcher: MessageBatcher, sender: RecordingSender
) -> None:
    await batcher.add("Urgent", "high")

    assert sender.sent == ["Urgent"]
    assert not batcher.timer_active


async def test_reaching_max_queue_size_triggers_one_auto_flush(
    batcher: MessageBatcher, sender: RecordingSender
) -> None:
    sizes = []
    for i in range(99):
        await batcher.add(f"Message {i}")
        sizes.append(batcher.queue_size)
    assert sender.sent == []

    await batcher.add("Message 99")

    assert batcher.stats["auto_flushes"] == 1
    assert len(sender.sent) == 1
    assert sender.sent[0].startswith("📬 100 updates")
    assert batcher.queue_size == 0

    await batcher.add("after flush")
    assert [m.text for m in batcher.pending] == ["after flush"]
    assert max(sizes) <= 100


async def test_queue_never_exceeds_bound(delivery: DeliveryService, scheduler: ManualScheduler) -> None:
    small = MessageBatcher(delivery=delivery, window_ms=5000, max_queue_size=3, scheduler=scheduler)
    for i in range(20):
        await small.add(f"Message {i}")
        assert small.queue_size <= 3

    assert small.stats["auto_flushes"] == 6
    assert [m.text for m in small.pending] == ["Message 18", "Message 19"]


async def test_stale_messages_are_discarded_not_sent(
    batcher: MessageBatcher, sender: RecordingSender, scheduler: ManualScheduler
) -> None:
    sender.gate = asyncio.Event()

    await batcher.add("first")
    await scheduler.advance_async(1.0)  # window flush starts, sender stalls
    assert sender.attempts == 1

    await batcher.add("stale")  # queued at t=1.0
    await scheduler.advance_async(2.0)  # t=3.0, stale is two windows old

    sender.gate.set()
    await scheduler.settle()

    assert sender.sent == ["first"]
    assert batcher.stats["messages_discarded"] == 1
    assert batcher.queue_size == 0


async def test_stale_messages_pruned_on_add(
    delivery: DeliveryService, sender: RecordingSender, scheduler: ManualScheduler
) -> None:
    batcher = MessageBatcher(delivery=delivery, window_ms=1000, scheduler=scheduler)
    sender.gate = asyncio.Event()

    await batcher.add("in flight")
    await scheduler.advance_async(1.0)
    await batcher.add("Old message")
    scheduler.advance(2.0)  # timer fires but the flush is still blocked

    await batcher.add("New message")

    assert [m.text for m in batcher.pending] == ["New message"]
    sender.gate.set()
    await batcher.close()


async def test_send_failure_drops_batch(scheduler: ManualScheduler) -> None:
    from afk_notifier.delivery.rate_limiter import RateLimiter

    sender = RecordingSender(fail_times=100)
    delivery = DeliveryService(
        sender, RateLimiter(600, 50, scheduler=scheduler), max_attempts=2, scheduler=scheduler
    )
    batcher = MessageBatcher(delivery=delivery, window_ms=1000, scheduler=scheduler)
    await batcher.add("Message 1")

    task = asyncio.create_task(batcher.flush())
    await scheduler.advance_async(5)
    result = await task

    assert result is not None and not result.success
    assert sender.attempts == 2
    assert batcher.queue_size == 0
    assert batcher.stats["messages_dropped"] == 1


@pytest.mark.parametrize("text", ["", "   ", None, 42])
async def test_invalid_text_rejected(batcher: MessageBatcher, text) -> None:
    with pytest.raises(ValidationError, match="text"):
        await batcher.add(text)
    assert batcher.queue_size == 0


async def test_invalid_priority_rejected(batcher: MessageBatcher) -> None:
    with pytest.raises(ValidationError, match="priority"):
        await batcher.add("Test", "urgent")
    assert batcher.queue_size == 0


async def test_add_many_defaults_to_normal(batcher: MessageBatcher) -> None:
    result = await batcher.add_many([{"text": "No priority specified"}])

    assert result == {"success": True, "batched": 1}
    assert batcher.pending[0].priority == MessagePriority.NORMAL


async def test_add_many_flushes_once_for_high_priority(
    batcher: MessageBatcher, sender: RecordingSender
) -> None:
    result = await batcher.add_many([
        {"text": "Normal", "priority": "normal"},
        {"text": "Urgent", "priority": "high"},
    ])

    assert result["batched"] == 2
    assert len(sender.sent) == 1
    assert "Normal" in sender.sent[0] and "Urgent" in sender.sent[0]


async def test_add_many_validates_before_queueing(batcher: MessageBatcher) -> None:
    with pytest.raises(ValidationError):
        await batcher.add_many([{"text": "ok"}, {"text": ""}])
    assert batcher.queue_size == 0


async def test_close_flushes_and_rejects_new_messages(
    batcher: MessageBatcher, sender: RecordingSender, scheduler: ManualScheduler
) -> None:
    await batcher.add("leftover")

    await batcher.close()

    assert sender.sent == ["leftover"]
    assert scheduler.pending_timers == 0
    with pytest.raises(NotifierError):
        await batcher.add("too late")


async def test_close_without_flush_discards(batcher: MessageBatcher, sender: RecordingSender) -> None:
    await batcher.add("leftover")

    await batcher.close(flush_remaining=False)

    assert sender.sent == []
    assert batcher.stats["messages_discarded"] == 1


async def test_high_priority_waiting_on_flush_keeps_its_place(
    batcher: MessageBatcher, sender: RecordingSender, scheduler: ManualScheduler
) -> None:
    sender.gate = asyncio.Event()
    await batcher.add("first")
    await scheduler.advance_async(1.0)  # window flush stalls in the sender

    urgent = asyncio.create_task(batcher.add("H", "high"))
    await scheduler.settle()
    await batcher.add("N-after-H")

    sender.gate.set()
    await urgent
    await scheduler.settle()

    assert sender.sent == ["first", f"📬 2 updates\n\nH{BATCH_SEPARATOR}N-after-H"]
    assert batcher.queue_size == 0


@pytest.mark.parametrize("item", ["plain string", 7, None])
async def test_add_many_rejects_non_mapping_items(batcher: MessageBatcher, item) -> None:
    with pytest.raises(ValidationError, match="index 1"):
        await batcher.add_many([{"text": "ok"}, item])
    assert batcher.queue_size == 0
