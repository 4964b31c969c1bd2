"""Domain exceptions raised by task timer and escalation services."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from uuid import UUID


class TaskServiceError(Exception):
    """Base class for task timer and escalation failures."""


class InvalidTransition(TaskServiceError):  # noqa: N818
    """A timer state-machine rule was violated by the requested transition."""

    def __init__(self, transition: str, reason: str) -> None:
        self.transition = transition
        self.reason = reason
        super().__init__(f"Cannot {transition} task: {reason}")


class TaskNotFound(TaskServiceError):  # noqa: N818
    """No task row exists for the requested id."""

    def __init__(self, task_id: UUID) -> None:
        self.task_id = task_id
        super().__init__(f"Task {task_id} not found")


class StorageUnavailable(TaskServiceError):  # noqa: N818
    """A read or write against the task store failed."""


class DispatchFailure(TaskServiceError):  # noqa: N818
    """Notification delivery failed or timed out; never rolls back escalation state."""
