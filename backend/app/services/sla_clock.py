"""Pure deadline and countdown computations for task SLA timers.

Every caller that asks "is this task overdue?" goes through this module, so
the countdown display, the escalation protocol and the sweeper all agree on a
single formula:

* a closed task has no countdown;
* a custom duration governs once the timer is running
  (``started_at + custom_duration_seconds``);
* otherwise the absolute ``due_at`` governs;
* otherwise there is no deadline.

Nothing here touches storage or the clock; ``now`` is always an argument.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Literal

from app.core.time import as_naive_utc

if TYPE_CHECKING:
    from app.models.tasks import Task

URGENT_THRESHOLD_SECONDS = 3600

CountdownState = Literal["closed", "no_deadline", "counting"]


@dataclass(frozen=True)
class RemainingTime:
    """Snapshot of a task countdown at a given instant."""

    state: CountdownState
    is_overdue: bool = False
    is_urgent: bool = False
    seconds_remaining: int | None = None
    deadline_at: datetime | None = None

    @property
    def text(self) -> str:
        if self.state == "closed":
            return "Closed"
        if self.state == "no_deadline" or self.seconds_remaining is None:
            return "No deadline"
        if self.is_overdue:
            return "00:00:00"
        return format_clock(self.seconds_remaining)


def _floor_seconds(delta: timedelta) -> int:
    return math.floor(delta.total_seconds())


def elapsed_since_start(started_at: datetime, now: datetime) -> int:
    """Whole seconds a timer has been running, never negative."""
    return max(0, _floor_seconds(as_naive_utc(now) - as_naive_utc(started_at)))


def effective_deadline(task: Task) -> datetime | None:
    """Return the authoritative deadline for a task, or None when it has none."""
    if task.custom_duration_seconds and task.started_at is not None:
        return as_naive_utc(task.started_at) + timedelta(seconds=task.custom_duration_seconds)
    if task.due_at is not None:
        return as_naive_utc(task.due_at)
    return None


def remaining(task: Task, now: datetime) -> RemainingTime:
    """Compute overdue/urgent status and signed seconds remaining for a task."""
    if task.status == "closed":
        return RemainingTime(state="closed")
    deadline = effective_deadline(task)
    if deadline is None:
        return RemainingTime(state="no_deadline")
    seconds_remaining = _floor_seconds(deadline - as_naive_utc(now))
    return RemainingTime(
        state="counting",
        is_overdue=seconds_remaining < 0,
        is_urgent=0 < seconds_remaining < URGENT_THRESHOLD_SECONDS,
        seconds_remaining=seconds_remaining,
        deadline_at=deadline,
    )


def is_overdue(task: Task, now: datetime) -> bool:
    return remaining(task, now).is_overdue


def is_escalation_candidate(task: Task, now: datetime) -> bool:
    """True while a task is open or pending, not yet escalated, and past its deadline."""
    if task.status == "closed" or task.escalated_at is not None:
        return False
    return is_overdue(task, now)


def format_clock(seconds: int) -> str:
    """Render a non-negative second count as HH:MM:SS."""
    seconds = max(0, seconds)
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def format_time_spent(seconds: int) -> str:
    hours, rest = divmod(max(0, seconds), 3600)
    minutes, secs = divmod(rest, 60)
    return f"{hours}h {minutes}m {secs}s"
