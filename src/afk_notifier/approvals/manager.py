"""
Approval Manager - Lifecycle of human-in-the-loop approval requests.

A caller asks a question with a fixed set of options and gets an opaque id
back immediately. The remote party answers out of band; an external
listener hands the answer to ``submit_response``. The caller polls with
``poll_response`` (usually through AdaptivePoller) until the request is
terminal.

State machine:
    PENDING -> RESOLVED   (submit_response)
    PENDING -> TIMED_OUT  (timeout timer, or evicted at capacity)
    PENDING -> CANCELLED  (cancel)

All three targets are terminal. Cleanup (cancel the timer, move the entry
out of the live registry) runs exactly once per request. A terminal result
is then handed to exactly one poll and forgotten.
"""

import asyncio
import logging
import uuid
from typing import Any, Callable, Mapping, Optional, Sequence, Union

from afk_notifier.core.config import ApprovalConfig
from afk_notifier.core.errors import (
    AlreadyResolvedError,
    CapacityExceeded,
    NotFoundError,
    ValidationError,
)
from afk_notifier.core.models import (
    ApprovalOption,
    ApprovalRequest,
    ApprovalResponse,
    ApprovalState,
    PollResult,
    PollStatus,
    SubmitResult,
)
from afk_notifier.delivery.sender import DeliveryService
from afk_notifier.temporal.bounded import BoundedAgeQueue
from afk_notifier.temporal.clock import AsyncioScheduler, Scheduler

logger = logging.getLogger(__name__)

OptionInput = Union[ApprovalOption, Mapping[str, Any]]
ResponseInput = Union[ApprovalResponse, Mapping[str, Any], str]

_POLL_STATUS = {
    ApprovalState.RESOLVED: PollStatus.RESOLVED,
    ApprovalState.TIMED_OUT: PollStatus.TIMED_OUT,
    ApprovalState.CANCELLED: PollStatus.CANCELLED,
}


def render_question(request: ApprovalRequest) -> str:
    """
    Plain-text form of a request: header, question, numbered options.

    Example:
        🤔 Release

        Deploy to production?

        1. Yes: Deploy now
        2. No: Abort
    """
    lines = "\n".join(
        f"{i}. {opt.label}: {opt.description}" for i, opt in enumerate(request.options, 1)
    )
    return f"🤔 {request.header or 'Approval Request'}\n\n{request.question}\n\n{lines}"


def validate_options(options: Any) -> list[ApprovalOption]:
    """
    Check and normalize the options of an approval request.

    Raises:
        ValidationError: If options is empty or an option lacks a label or
                         description
    """
    if isinstance(options, (str, bytes)) or not isinstance(options, Sequence) or not options:
        raise ValidationError('Invalid input: "options" must be a non-empty array')

    parsed = []
    for i, opt in enumerate(options):
        if isinstance(opt, ApprovalOption):
            parsed.append(opt)
            continue
        if not isinstance(opt, Mapping):
            raise ValidationError(f"Invalid input: option at index {i} must be an object")
        label = opt.get("label")
        description = opt.get("description")
        if not isinstance(label, str) or not label.strip():
            raise ValidationError(f'Invalid input: option at index {i} must have a "label" string')
        if not isinstance(description, str) or not description.strip():
            raise ValidationError(
                f'Invalid input: option at index {i} must have a "description" string'
            )
        parsed.append(ApprovalOption(label=label, description=description))
    return parsed


class ApprovalManager:
    """
    Owns the registry of approval requests.

    Pending requests live in a registry capped at ``max_concurrent``; when a
    new request would exceed the cap, the oldest pending request is evicted
    to TIMED_OUT. Terminal requests wait in a second, bounded store until
    one poll collects them.

    Attributes:
        default_timeout: Timeout used when create_approval gets none
        max_concurrent: Pending requests allowed at once
        delivery: Optional send path for response acknowledgements
        stats: Lifecycle counters

    Example:
        manager = ApprovalManager(timeout_seconds=300, max_concurrent=10)
        approval_id = manager.create_approval(
            "Deploy to production?",
            [{"label": "Yes", "description": "Deploy now"},
             {"label": "No", "description": "Abort"}],
        )
        # ... later, from the transport listener
        manager.submit_response(approval_id, "Yes")
        result = manager.poll_response(approval_id)
    """

    def __init__(
        self,
        timeout_seconds: float = 300,
        max_concurrent: int = 10,
        scheduler: Optional[Scheduler] = None,
        delivery: Optional[DeliveryService] = None,
        on_created: Optional[Callable[[str, str], None]] = None,
        on_evicted: Optional[Callable[[CapacityExceeded], None]] = None,
        max_completed: int = 100,
    ):
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")

        self.default_timeout = timeout_seconds
        self.max_concurrent = max_concurrent
        self.delivery = delivery
        self._scheduler = scheduler or AsyncioScheduler()
        self._on_created = on_created
        self._on_evicted = on_evicted
        self._live: BoundedAgeQueue[str, ApprovalRequest] = BoundedAgeQueue()
        # Terminal requests not yet collected by a poll
        self._completed: BoundedAgeQueue[str, ApprovalRequest] = BoundedAgeQueue(max_completed)
        self._ack_tasks: set[asyncio.Task] = set()
        self.stats = {
            "created": 0,
            "resolved": 0,
            "timed_out": 0,
            "cancelled": 0,
            "evicted": 0,
            "discarded": 0,  # Terminal results dropped before any poll collected them
        }

    @classmethod
    def from_config(
        cls,
        config: ApprovalConfig,
        scheduler: Optional[Scheduler] = None,
        delivery: Optional[DeliveryService] = None,
        **kwargs: Any,
    ) -> "ApprovalManager":
        return cls(
            timeout_seconds=config.timeout_seconds,
            max_concurrent=config.max_concurrent,
            scheduler=scheduler,
            delivery=delivery,
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def create_approval(
        self,
        question: str,
        options: Sequence[OptionInput],
        header: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ) -> str:
        """
        Register a new pending approval request.

        Args:
            question: Question for the remote party
            options: Non-empty list of {label, description} options
            header: Optional short header
            timeout_seconds: Overrides the default timeout

        Returns:
            Opaque identifier of the request

        Raises:
            ValidationError: On malformed input; nothing is created
        """
        if not isinstance(question, str) or not question.strip():
            raise ValidationError('Invalid input: "question" must be a non-empty string')
        parsed_options = validate_options(options)
        if header is not None and not isinstance(header, str):
            raise ValidationError('Invalid input: "header" must be a string if provided')
        timeout = self.default_timeout if timeout_seconds is None else timeout_seconds
        if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
            raise ValidationError('Invalid input: "timeout_seconds" must be a positive number')

        if len(self._live) >= self.max_concurrent:
            self._evict_oldest()

        now = self._scheduler.now()
        approval_id = uuid.uuid4().hex
        request = ApprovalRequest(
            id=approval_id,
            question=question,
            options=parsed_options,
            header=header,
            created_at=now,
            timeout_seconds=float(timeout),
        )
        request._timer = self._scheduler.schedule_after(
            timeout, lambda: self._on_timeout(approval_id)
        )
        self._live.push(approval_id, request, now)
        self.stats["created"] += 1

        logger.info(
            f"Approval {approval_id[:8]} created "
            f"({len(parsed_options)} options, timeout {timeout}s, "
            f"{len(self._live)}/{self.max_concurrent} pending)"
        )

        if self._on_created:
            try:
                self._on_created(approval_id, render_question(request))
            except Exception as e:
                logger.error(f"Error in on_created hook for {approval_id[:8]}: {e}")

        return approval_id

    def submit_response(self, approval_id: str, response: ResponseInput) -> SubmitResult:
        """
        Record the remote party's answer.

        Only accepted while the request is pending. Never raises for unknown
        or already finished requests; the reason is in the result.

        Args:
            approval_id: Identifier returned by create_approval
            response: ApprovalResponse, a mapping with ``selected_option`` /
                      ``custom_input``, or a string (an option label, else
                      free text)

        Returns:
            SubmitResult; ``error`` is NotFoundError, AlreadyResolvedError or
            ValidationError when rejected
        """
        request = self._live.get(approval_id)
        if request is None:
            finished = self._completed.get(approval_id)
            if finished is not None:
                error = AlreadyResolvedError(approval_id, finished.state.value)
            else:
                error = NotFoundError(approval_id)
            logger.debug(f"Response rejected: {error}")
            return SubmitResult(accepted=False, error=error)

        try:
            parsed = self._parse_response(request, response)
        except ValidationError as e:
            logger.warning(f"Malformed response for {approval_id[:8]}: {e}")
            return SubmitResult(accepted=False, error=e)

        self._finish(request, ApprovalState.RESOLVED, parsed)
        logger.info(f"Approval {approval_id[:8]} resolved: {parsed.summary()[:50]}")
        self._acknowledge(parsed)
        return SubmitResult(accepted=True)

    def poll_response(self, approval_id: str) -> PollResult:
        """
        Check on a request.

        Pending requests are left untouched. The first poll that sees a
        terminal state returns it and drops the request; later polls get
        NOT_FOUND.
        """
        if approval_id in self._live:
            return PollResult(status=PollStatus.PENDING)

        finished = self._completed.pop(approval_id)
        if finished is None:
            return PollResult(status=PollStatus.NOT_FOUND)

        logger.debug(f"Approval {approval_id[:8]} collected ({finished.state.value})")
        return PollResult(status=_POLL_STATUS[finished.state], response=finished.response)

    def cancel(self, approval_id: str) -> bool:
        """
        Cancel a pending request. Idempotent.

        Returns:
            True if a pending request was cancelled, False otherwise
        """
        request = self._live.get(approval_id)
        if request is None:
            return False
        self._finish(request, ApprovalState.CANCELLED, None)
        logger.info(f"Approval {approval_id[:8]} cancelled")
        return True

    def get(self, approval_id: str) -> Optional[ApprovalRequest]:
        """Read-only copy of a live or uncollected request."""
        request = self._live.get(approval_id) or self._completed.get(approval_id)
        return request.model_copy() if request else None

    @property
    def pending_count(self) -> int:
        return len(self._live)

    @property
    def uncollected_count(self) -> int:
        return len(self._completed)

    async def shutdown(self) -> None:
        """Cancel every pending request and its timer, drop uncollected results."""
        pending = list(self._live)
        for request in pending:
            self._finish(request, ApprovalState.CANCELLED, None)
        self._completed.drain()
        if pending:
            logger.info(f"ApprovalManager shut down, {len(pending)} pending request(s) cancelled")
        if self._ack_tasks:
            await asyncio.gather(*list(self._ack_tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _finish(
        self,
        request: ApprovalRequest,
        state: ApprovalState,
        response: Optional[ApprovalResponse],
    ) -> bool:
        """Move a pending request to a terminal state and clean it up."""
        if not request.is_pending:
            return False
        request.state = state
        request.response = response
        self.stats[state.value] += 1
        self._cleanup(request)
        return True

    def _cleanup(self, request: ApprovalRequest) -> None:
        if request._cleaned_up:
            return
        request._cleaned_up = True

        if request._timer is not None:
            request._timer.cancel()
            request._timer = None

        self._live.pop(request.id)
        dropped = self._completed.push(request.id, request, self._scheduler.now())
        for old in dropped:
            self.stats["discarded"] += 1
            logger.warning(
                f"Uncollected approval {old.id[:8]} ({old.state.value}) discarded"
            )

    def _on_timeout(self, approval_id: str) -> None:
        request = self._live.get(approval_id)
        if request is None or not request.is_pending:
            return
        request._timer = None  # Already fired
        self._finish(request, ApprovalState.TIMED_OUT, ApprovalResponse.empty())
        logger.info(f"Approval {approval_id[:8]} timed out after {request.timeout_seconds}s")

    def _evict_oldest(self) -> None:
        found = self._live.oldest()
        if found is None:
            return
        approval_id, request = found
        event = CapacityExceeded(
            evicted_id=approval_id,
            max_concurrent=self.max_concurrent,
            pending_age_seconds=self._scheduler.now() - request.created_at,
        )
        self._finish(request, ApprovalState.TIMED_OUT, ApprovalResponse.empty())
        self.stats["evicted"] += 1
        logger.warning(
            f"Approval capacity reached ({self.max_concurrent}), evicted oldest "
            f"request {approval_id[:8]} after {event.pending_age_seconds:.1f}s"
        )
        if self._on_evicted:
            try:
                self._on_evicted(event)
            except Exception as e:
                logger.error(f"Error in on_evicted hook for {approval_id[:8]}: {e}")

    @staticmethod
    def _parse_response(request: ApprovalRequest, response: ResponseInput) -> ApprovalResponse:
        if isinstance(response, ApprovalResponse):
            return response

        if isinstance(response, str):
            if not response.strip():
                raise ValidationError("Response text is empty")
            option = request.find_option(response)
            if option is not None:
                return ApprovalResponse(selected_option=option)
            return ApprovalResponse(custom_input=response)

        if isinstance(response, Mapping):
            selected = response.get("selected_option", response.get("selectedOption"))
            custom = response.get("custom_input", response.get("customInput"))
            option = None
            if isinstance(selected, ApprovalOption):
                option = selected
            elif isinstance(selected, str):
                option = request.find_option(selected)
                if option is None:
                    raise ValidationError(f"Unknown option {selected!r}")
            elif isinstance(selected, Mapping):
                option = request.find_option(str(selected.get("label", "")))
                if option is None:
                    raise ValidationError(f"Unknown option {selected.get('label')!r}")
            elif selected is not None:
                raise ValidationError("selected_option must be an option or its label")
            if custom is not None and not isinstance(custom, str):
                raise ValidationError("custom_input must be a string")
            return ApprovalResponse(selected_option=option, custom_input=custom)

        raise ValidationError(f"Unsupported response type {type(response).__name__}")

    def _acknowledge(self, response: ApprovalResponse) -> None:
        if self.delivery is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, acknowledgement not sent")
            return
        task = loop.create_task(
            self.delivery.deliver(f"✅ Response received: {response.summary()}")
        )
        self._ack_tasks.add(task)
        task.add_done_callback(self._ack_tasks.discard)

    def __repr__(self) -> str:
        return (
            f"ApprovalManager(pending={len(self._live)}, "
            f"max_concurrent={self.max_concurrent}, "
            f"uncollected={len(self._completed)})"
        )
