"""Task model carrying deadline, timer, escalation, and approval fields."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlmodel import Field

from app.core.time import utcnow
from app.models.base import QueryModel

RUNTIME_ANNOTATION_TYPES = (datetime,)

TASK_STATUSES = ("open", "pending", "closed")
TASK_PRIORITIES = ("p1", "p2", "p3")


class Task(QueryModel, table=True):
    """Sales task with an SLA deadline and a start/pause work timer."""

    __tablename__ = "tasks"  # pyright: ignore[reportAssignmentType]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    title: str
    description: str | None = None
    status: str = Field(default="open", index=True)  # open | pending | closed
    priority: str = Field(default="p2", index=True)
    department: str = Field(default="Sales")

    created_by: UUID | None = Field(default=None, foreign_key="profiles.id", index=True)
    assigned_to: UUID | None = Field(default=None, foreign_key="profiles.id", index=True)

    # Deadline sources: a running custom duration overrides due_at.
    due_at: datetime | None = Field(default=None, index=True)
    custom_duration_seconds: int | None = Field(default=None, ge=1)

    started_at: datetime | None = None
    time_spent_seconds: int = Field(default=0, ge=0)

    # escalated_at is written once, by the conditional claim update.
    escalated_at: datetime | None = Field(default=None, index=True)
    escalated_to: UUID | None = Field(default=None, foreign_key="profiles.id", index=True)

    closed_approved_by: UUID | None = Field(default=None, foreign_key="profiles.id")
    closed_at: datetime | None = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_running(self) -> bool:
        return self.started_at is not None

    @property
    def is_closed(self) -> bool:
        return self.status == "closed"
