"""
Message Batcher - Accumulates outbound notifications into windowed batches.

Every notification headed for the remote party goes through the batcher so
that a burst of small updates becomes a single send:

1. ``add`` appends the text to an in-memory queue and arms the window timer
2. When the window timer fires, stale entries are discarded and the rest
   are combined into one message and handed to the DeliveryService
3. High priority text skips the window and flushes the queue immediately
4. Safety limits bound memory: the queue never exceeds ``max_queue_size``,
   and entries older than two windows are dropped instead of sent late
"""

import asyncio
import itertools
import logging
from typing import Any, Iterable, Mapping, Optional, Union

from afk_notifier.core.config import BatchingConfig
from afk_notifier.core.errors import NotifierError, ValidationError
from afk_notifier.core.models import DeliveryResult, MessagePriority, QueuedMessage
from afk_notifier.delivery.sender import DeliveryService
from afk_notifier.temporal.bounded import BoundedAgeQueue
from afk_notifier.temporal.clock import AsyncioScheduler, Scheduler, TimerHandle

logger = logging.getLogger(__name__)

BATCH_SEPARATOR = "\n\n─────\n\n"


def format_batch(messages: list[QueuedMessage]) -> str:
    """
    Combine queued messages into one outbound text.

    A single message is sent as-is; several get a count header and a
    separator between them, in enqueue order.
    """
    if len(messages) == 1:
        return messages[0].text
    body = BATCH_SEPARATOR.join(m.text for m in messages)
    return f"📬 {len(messages)} updates\n\n{body}"


def parse_priority(priority: Union[str, MessagePriority, None]) -> MessagePriority:
    if priority is None:
        return MessagePriority.NORMAL
    try:
        return MessagePriority(priority)
    except ValueError:
        raise ValidationError(
            f'Invalid input: "priority" must be one of: '
            f'{", ".join(p.value for p in MessagePriority)}'
        ) from None


def validate_text(text: Any) -> None:
    if not isinstance(text, str) or not text.strip():
        raise ValidationError('Invalid input: "text" must be a non-empty string')


class MessageBatcher:
    """
    Time-windowed batching of outbound text with a bounded queue.

    Attributes:
        delivery: Rate-limited, retrying send path
        window_seconds: Batch window length
        max_queue_size: Queue bound; reaching it triggers an auto-flush
        stats: Counters for health reporting

    Example:
        batcher = MessageBatcher(delivery=service, window_ms=5000)
        await batcher.add("Tests passed")
        await batcher.add("Deploy failed", priority="high")  # sent now
        await batcher.close()
    """

    def __init__(
        self,
        delivery: DeliveryService,
        window_ms: int = 5000,
        max_queue_size: int = 100,
        scheduler: Optional[Scheduler] = None,
    ):
        if window_ms <= 0:
            raise ValueError("window_ms must be positive")
        if max_queue_size < 1:
            raise ValueError("max_queue_size must be >= 1")

        self.delivery = delivery
        self.window_seconds = window_ms / 1000.0
        self.max_queue_size = max_queue_size
        self._scheduler = scheduler or AsyncioScheduler()
        self._queue: BoundedAgeQueue[int, QueuedMessage] = BoundedAgeQueue(max_queue_size)
        self._seq = itertools.count()
        self._timer: Optional[TimerHandle] = None
        self._tasks: set[asyncio.Task] = set()
        # Serializes flushes so batches go out in enqueue order
        self._flush_lock = asyncio.Lock()
        self._closed = False
        self.stats = {
            "flushes": 0,
            "auto_flushes": 0,
            "messages_sent": 0,
            "messages_discarded": 0,
            "messages_dropped": 0,  # Delivery failed after retries
        }

        logger.debug(
            f"MessageBatcher initialized: window={self.window_seconds}s, "
            f"max_queue_size={max_queue_size}"
        )

    @classmethod
    def from_config(
        cls,
        delivery: DeliveryService,
        config: BatchingConfig,
        scheduler: Optional[Scheduler] = None,
    ) -> "MessageBatcher":
        return cls(
            delivery=delivery,
            window_ms=config.window_ms,
            max_queue_size=config.max_queue_size,
            scheduler=scheduler,
        )

    @property
    def retention_seconds(self) -> float:
        """Age after which a queued message is discarded unsent."""
        return 2 * self.window_seconds

    async def add(
        self,
        text: str,
        priority: Union[str, MessagePriority] = MessagePriority.NORMAL,
    ) -> Optional[DeliveryResult]:
        """
        Queue a message for the next batch.

        Args:
            text: Already formatted notification text
            priority: "low", "normal" or "high". High flushes immediately.

        Returns:
            DeliveryResult when this call flushed the queue, otherwise None

        Raises:
            ValidationError: If text is empty or priority is unknown
        """
        validate_text(text)
        level = parse_priority(priority)
        if self._closed:
            raise NotifierError("MessageBatcher is closed")

        message = QueuedMessage(
            text=text, priority=level, enqueued_at=self._scheduler.now(), seq=next(self._seq)
        )

        if level == MessagePriority.HIGH:
            logger.debug("High priority message, flushing immediately")
            self._cancel_timer()
            return await self._flush(extra=message)

        self._discard_stale()

        # A stalled flush can leave the queue at its bound; wait it out
        while self._queue.is_full:
            await self._flush()

        self._queue.push(message.seq, message, message.enqueued_at)
        logger.debug(f"Queued message, queue size: {len(self._queue)}")

        if self._queue.is_full:
            logger.info(
                f"Batch queue reached max size ({self.max_queue_size}), forcing flush"
            )
            self.stats["auto_flushes"] += 1
            self._cancel_timer()
            return await self._flush()

        self._ensure_timer()
        return None

    async def add_many(self, messages: Iterable[Mapping[str, Any]]) -> dict:
        """
        Queue several ``{"text", "priority"}`` messages at once.

        Priority defaults to normal. If any message is high priority the
        queue is flushed once, after all of them were added.

        Returns:
            {"success": True, "batched": <number of messages added>}
        """
        items = list(messages)
        for i, item in enumerate(items):
            if not isinstance(item, Mapping):
                raise ValidationError(f"Invalid input: message at index {i} must be an object")
            validate_text(item.get("text"))
        levels = [parse_priority(m.get("priority")) for m in items]
        count = 0
        for item, level in zip(items, levels):
            # High priority is deferred to the single flush below
            queued_level = MessagePriority.NORMAL if level == MessagePriority.HIGH else level
            await self.add(item.get("text"), queued_level)
            count += 1
        if MessagePriority.HIGH in levels:
            await self.flush()
        return {"success": True, "batched": count}

    async def flush(self) -> Optional[DeliveryResult]:
        """
        Discard stale entries, then send everything queued as one batch.

        Returns:
            DeliveryResult of the send, or None if there was nothing to send
        """
        self._cancel_timer()
        return await self._flush()

    async def _flush(self, extra: Optional[QueuedMessage] = None) -> Optional[DeliveryResult]:
        async with self._flush_lock:
            self._discard_stale()
            batch = self._queue.drain()
            if extra is not None:
                # Messages queued while this one waited for the lock go after it
                batch.append(extra)
                batch.sort(key=lambda m: m.seq)
            if not batch:
                logger.debug("Nothing to flush")
                return None

            self.stats["flushes"] += 1
            logger.info(f"Flushing batch: {len(batch)} message(s)")
            result = await self.delivery.deliver(format_batch(batch))
            if result.success:
                self.stats["messages_sent"] += len(batch)
            else:
                self.stats["messages_dropped"] += len(batch)
                logger.error(
                    f"Batch of {len(batch)} message(s) dropped: {result.error}. "
                    f"Messages were: {[m.text[:50] for m in batch]}"
                )
            return result

    def _discard_stale(self) -> None:
        cutoff = self._scheduler.now() - self.retention_seconds
        stale = self._queue.evict_until(cutoff)
        if stale:
            self.stats["messages_discarded"] += len(stale)
            logger.warning(
                f"Discarded {len(stale)} stale message(s) older than "
                f"{self.retention_seconds:.1f}s"
            )

    def _ensure_timer(self) -> None:
        if self._timer is None and not self._closed:
            self._timer = self._scheduler.schedule_after(self.window_seconds, self._on_window)
            logger.debug(f"Window timer armed: {self.window_seconds}s")

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_window(self) -> None:
        self._timer = None
        task = asyncio.get_running_loop().create_task(self._window_flush())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _window_flush(self) -> None:
        try:
            await self._flush()
        except Exception as e:
            logger.error(f"Error in window flush: {e}")
        finally:
            # Keep the window running while messages are waiting
            if len(self._queue) > 0:
                self._ensure_timer()

    async def close(self, flush_remaining: bool = True) -> None:
        """
        Stop the window timer and optionally flush what is left.

        Args:
            flush_remaining: Send queued messages (True) or discard them
        """
        self._closed = True
        self._cancel_timer()
        if flush_remaining:
            await self._flush()
        else:
            dropped = self._queue.drain()
            if dropped:
                self.stats["messages_discarded"] += len(dropped)
                logger.warning(f"Closing batcher, {len(dropped)} queued message(s) discarded")
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    @property
    def pending(self) -> list[QueuedMessage]:
        """Snapshot of queued messages in enqueue order."""
        return list(self._queue)

    @property
    def queue_size(self) -> int:
        return len(self._queue)

    @property
    def timer_active(self) -> bool:
        return self._timer is not None

    @property
    def closed(self) -> bool:
        return self._closed

    def __repr__(self) -> str:
        return (
            f"MessageBatcher(window_seconds={self.window_seconds}, "
            f"max_queue_size={self.max_queue_size}, "
            f"queued={len(self._queue)}, timer_active={self._timer is not None})"
        )
