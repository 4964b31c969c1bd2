"""Schemas for task and timer API payloads."""

from __future__ import annotations

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import Field, field_validator
from sqlmodel import SQLModel

from app.core.time import as_naive_utc

RUNTIME_ANNOTATION_TYPES = (datetime, UUID)

TaskPriority = Literal["p1", "p2", "p3"]


class TaskCreate(SQLModel):
    """Payload for creating a task with an optional deadline and team."""

    title: str = Field(min_length=1, max_length=500)
    description: str | None = None
    priority: TaskPriority = "p2"
    department: str = "Sales"
    assigned_to: UUID | None = None
    assignee_ids: list[UUID] = Field(default_factory=list)
    due_at: datetime | None = None
    custom_duration_seconds: int | None = Field(default=None, ge=1)

    @field_validator("title")
    @classmethod
    def _strip_title(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("title must not be blank")
        return value

    @field_validator("due_at")
    @classmethod
    def _naive_due_at(cls, value: datetime | None) -> datetime | None:
        return as_naive_utc(value) if value is not None else None


class TaskRead(SQLModel):
    """Task payload returned by read and transition endpoints."""

    id: UUID
    title: str
    description: str | None = None
    status: str
    priority: str
    department: str
    created_by: UUID | None = None
    assigned_to: UUID | None = None
    due_at: datetime | None = None
    custom_duration_seconds: int | None = None
    started_at: datetime | None = None
    time_spent_seconds: int
    escalated_at: datetime | None = None
    escalated_to: UUID | None = None
    closed_approved_by: UUID | None = None
    closed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class TaskTimerRead(SQLModel):
    """Countdown snapshot for a task at request time."""

    task_id: UUID
    state: Literal["closed", "no_deadline", "counting"]
    is_running: bool
    is_overdue: bool
    is_urgent: bool
    seconds_remaining: int | None = None
    deadline_at: datetime | None = None
    remaining_text: str
    time_spent_seconds: int
    time_spent_text: str
