"""Approval request lifecycle and polling."""

from afk_notifier.approvals.manager import ApprovalManager, render_question
from afk_notifier.approvals.poller import AdaptivePoller

__all__ = [
    "ApprovalManager",
    "AdaptivePoller",
    "render_question",
]
