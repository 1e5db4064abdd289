"""Time sources, timers and age-bounded collections."""

from afk_notifier.temporal.clock import (
    AsyncioScheduler,
    ManualScheduler,
    Scheduler,
    TimerHandle,
)
from afk_notifier.temporal.bounded import BoundedAgeQueue

__all__ = [
    "AsyncioScheduler",
    "ManualScheduler",
    "Scheduler",
    "TimerHandle",
    "BoundedAgeQueue",
]
