"""
AFK Notifier - Outbound notification coordination for away-from-keyboard sessions.

This package manages human-in-the-loop approval requests answered
asynchronously by a remote party, batches outbound notification text, and
delivers it through an injected sender under token-bucket rate limiting with
bounded retries. Transport, formatting and credentials belong to the host.
"""

from afk_notifier.approvals import AdaptivePoller, ApprovalManager
from afk_notifier.core import (
    ApprovalOption,
    ApprovalResponse,
    ApprovalState,
    MessagePriority,
    NotifierConfig,
    PollStatus,
    load_config,
)
from afk_notifier.core.log import configure_logging
from afk_notifier.delivery import DeliveryService, MessageBatcher, RateLimiter
from afk_notifier.service import NotificationService
from afk_notifier.temporal import AsyncioScheduler, ManualScheduler

__version__ = "1.0.0"

__all__ = [
    "AdaptivePoller",
    "ApprovalManager",
    "ApprovalOption",
    "ApprovalResponse",
    "ApprovalState",
    "MessagePriority",
    "NotifierConfig",
    "PollStatus",
    "load_config",
    "configure_logging",
    "DeliveryService",
    "MessageBatcher",
    "RateLimiter",
    "NotificationService",
    "AsyncioScheduler",
    "ManualScheduler",
]
