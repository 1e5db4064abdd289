# ---------------------------------
# TYPED EXCEPTIONS
# ---------------------------------
from dataclasses import dataclass
from typing import Optional


class NotifierError(Exception):
    """Base class for every error raised or returned by the coordinator."""
    pass


class ValidationError(NotifierError, ValueError):
    """Malformed request rejected before any state change."""
    pass


class NotFoundError(NotifierError, LookupError):
    """Operation on an identifier that is not in the registry."""

    def __init__(self, approval_id: str):
        super().__init__(f"Approval {approval_id} not found")
        self.approval_id = approval_id


class AlreadyResolvedError(NotifierError):
    """Response submitted for an approval that already left PENDING."""

    def __init__(self, approval_id: str, state: str):
        super().__init__(f"Approval {approval_id} is already {state}")
        self.approval_id = approval_id
        self.state = state


class SendFailure(NotifierError):
    """The injected sender kept failing after bounded retries."""

    def __init__(self, attempts: int, cause: Optional[BaseException] = None):
        reason = f": {cause}" if cause else ""
        super().__init__(f"Send failed after {attempts} attempt(s){reason}")
        self.attempts = attempts
        self.cause = cause


@dataclass(frozen=True)
class CapacityExceeded:
    """
    Non-fatal event emitted when the oldest pending approval is evicted.

    Not raised; logged as a warning and handed to the eviction hook.
    """
    evicted_id: str
    max_concurrent: int
    pending_age_seconds: float
