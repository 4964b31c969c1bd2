"""Team assignment rows linking additional users to a task."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import UniqueConstraint
from sqlmodel import Field

from app.core.time import utcnow
from app.models.base import QueryModel

RUNTIME_ANNOTATION_TYPES = (datetime,)


class TaskAssignee(QueryModel, table=True):
    """Many-to-many assignment of users to a task for team collaboration."""

    __tablename__ = "task_assignees"  # pyright: ignore[reportAssignmentType]
    __table_args__ = (
        UniqueConstraint("task_id", "user_id", name="uq_task_assignees_task_user"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    task_id: UUID = Field(foreign_key="tasks.id", index=True)
    user_id: UUID = Field(foreign_key="profiles.id", index=True)
    assigned_at: datetime = Field(default_factory=utcnow)
    assigned_by: UUID | None = Field(default=None, foreign_key="profiles.id")
