"""
Pydantic models for the notification coordinator.

Approval requests, their responses and poll results, queued outbound
messages and delivery outcomes. Configuration models live in
``afk_notifier.core.config``.
"""
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, field_validator


class ApprovalState(str, Enum):
    """Lifecycle state of an approval request."""
    PENDING = "pending"
    RESOLVED = "resolved"  # Remote party answered
    TIMED_OUT = "timed_out"  # Timer fired or evicted at capacity
    CANCELLED = "cancelled"  # Cancelled by the caller


TERMINAL_STATES = frozenset({
    ApprovalState.RESOLVED,
    ApprovalState.TIMED_OUT,
    ApprovalState.CANCELLED,
})


class PollStatus(str, Enum):
    """Result of polling an approval request."""
    PENDING = "pending"
    RESOLVED = "resolved"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"
    NOT_FOUND = "not_found"


class MessagePriority(str, Enum):
    """Priority of an outbound notification."""
    LOW = "low"  # Batched exactly like normal
    NORMAL = "normal"
    HIGH = "high"  # Flushes the queue immediately


class ApprovalOption(BaseModel):
    """One selectable answer of an approval request."""
    model_config = ConfigDict(frozen=True)

    label: str
    description: str

    @field_validator("label", "description")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must be a non-empty string")
        return v


class ApprovalResponse(BaseModel):
    """
    Answer recorded for an approval request.

    Both fields are ``None`` for the null response stored on timeout.
    """
    model_config = ConfigDict(frozen=True)

    selected_option: Optional[ApprovalOption] = None
    custom_input: Optional[str] = None

    @classmethod
    def empty(cls) -> "ApprovalResponse":
        """The null response used for timed-out requests."""
        return cls()

    @property
    def is_empty(self) -> bool:
        return self.selected_option is None and self.custom_input is None

    def summary(self) -> str:
        """Short human-readable form, used for acknowledgements."""
        if self.selected_option is not None:
            return self.selected_option.label
        if self.custom_input is not None:
            return self.custom_input
        return "no answer"


class ApprovalRequest(BaseModel):
    """
    A pending question awaiting a remote party's choice or free-text answer.

    Attributes:
        id: Opaque unique identifier (uuid4 hex)
        question: The question shown to the remote party
        options: Ordered, non-empty list of selectable answers
        header: Optional short header shown above the question
        created_at: Scheduler timestamp (seconds) at creation
        timeout_seconds: How long the request stays pending
        state: Current lifecycle state
        response: Recorded answer once the request left PENDING
    """
    id: str
    question: str
    options: list[ApprovalOption] = Field(min_length=1)
    header: Optional[str] = None
    created_at: float
    timeout_seconds: float
    state: ApprovalState = ApprovalState.PENDING
    response: Optional[ApprovalResponse] = None

    # Owned by ApprovalManager, never serialized
    _timer: Any = PrivateAttr(default=None)
    _cleaned_up: bool = PrivateAttr(default=False)

    @property
    def is_pending(self) -> bool:
        return self.state == ApprovalState.PENDING

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def deadline(self) -> float:
        return self.created_at + self.timeout_seconds

    def find_option(self, label: str) -> Optional[ApprovalOption]:
        """Look up an option by label (case-insensitive)."""
        wanted = label.strip().lower()
        for option in self.options:
            if option.label.lower() == wanted:
                return option
        return None


class PollResult(BaseModel):
    """Outcome of a single poll of an approval request."""
    model_config = ConfigDict(frozen=True)

    status: PollStatus
    response: Optional[ApprovalResponse] = None

    @property
    def is_final(self) -> bool:
        """True once polling can stop."""
        return self.status != PollStatus.PENDING


class SubmitResult(BaseModel):
    """Outcome of submitting a response; ``error`` is set when rejected."""
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    accepted: bool
    error: Optional[Exception] = None


class QueuedMessage(BaseModel):
    """Single outbound text waiting in the batch queue."""
    text: str
    priority: MessagePriority = MessagePriority.NORMAL
    enqueued_at: float
    seq: int = 0  # Enqueue order within one batcher


class DeliveryResult(BaseModel):
    """Outcome of sending one piece of text through the sender."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    success: bool
    attempts: int = 0
    text: str = ""
    error: Optional[Exception] = None
