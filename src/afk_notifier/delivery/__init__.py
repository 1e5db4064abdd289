"""Outbound delivery: rate limiting, retries and batching."""

from afk_notifier.delivery.rate_limiter import RateLimiter
from afk_notifier.delivery.sender import CallableSender, DeliveryService, Sender
from afk_notifier.delivery.message_batcher import MessageBatcher, format_batch

__all__ = [
    "RateLimiter",
    "CallableSender",
    "DeliveryService",
    "Sender",
    "MessageBatcher",
    "format_batch",
]
