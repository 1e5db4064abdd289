"""Core models, errors and configuration."""

from afk_notifier.core.models import (
    ApprovalOption,
    ApprovalRequest,
    ApprovalResponse,
    ApprovalState,
    DeliveryResult,
    MessagePriority,
    PollResult,
    PollStatus,
    QueuedMessage,
    SubmitResult,
)
from afk_notifier.core.errors import (
    AlreadyResolvedError,
    CapacityExceeded,
    NotFoundError,
    NotifierError,
    SendFailure,
    ValidationError,
)
from afk_notifier.core.config import NotifierConfig, load_config

__all__ = [
    "ApprovalOption",
    "ApprovalRequest",
    "ApprovalResponse",
    "ApprovalState",
    "DeliveryResult",
    "MessagePriority",
    "PollResult",
    "PollStatus",
    "QueuedMessage",
    "SubmitResult",
    "AlreadyResolvedError",
    "CapacityExceeded",
    "NotFoundError",
    "NotifierError",
    "SendFailure",
    "ValidationError",
    "NotifierConfig",
    "load_config",
]
