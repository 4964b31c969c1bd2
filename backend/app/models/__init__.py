"""Model exports for SQLAlchemy/SQLModel metadata discovery."""

from app.models.devices import Device
from app.models.profiles import Profile
from app.models.task_assignees import TaskAssignee
from app.models.tasks import Task

__all__ = [
    "Device",
    "Profile",
    "Task",
    "TaskAssignee",
]
