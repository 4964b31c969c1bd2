"""Task creation, countdown and timer transition endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any
from uuid import UUID

from fastapi import APIRouter, Query, status

from app.api.deps import ACTOR_DEP, DISPATCHER_DEP, SESSION_DEP, TASK_DEP
from app.core.time import utcnow
from app.models.profiles import Profile
from app.models.tasks import Task
from app.schemas.errors import ErrorResponse
from app.schemas.escalations import EscalationOutcomeRead
from app.schemas.tasks import TaskCreate, TaskRead, TaskTimerRead
from app.services import task_timer
from app.services.escalation_engine import escalate_overdue_task
from app.services.sla_clock import format_time_spent, remaining

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession

    from app.services.notifications.dispatcher import NotificationDispatcher

router = APIRouter(prefix="/tasks", tags=["tasks"])

TRANSITION_RESPONSES: dict[int | str, dict[str, Any]] = {
    status.HTTP_404_NOT_FOUND: {"model": ErrorResponse, "description": "Task does not exist"},
    status.HTTP_409_CONFLICT: {
        "model": ErrorResponse,
        "description": "Transition not allowed from the task's current state",
    },
    status.HTTP_503_SERVICE_UNAVAILABLE: {
        "model": ErrorResponse,
        "description": "Task store unavailable; safe to retry",
    },
}


def _task_read(task: Task) -> TaskRead:
    return TaskRead.model_validate(task, from_attributes=True)


@router.post("", response_model=TaskRead, status_code=status.HTTP_201_CREATED)
async def create_task(
    payload: TaskCreate,
    actor: Profile = ACTOR_DEP,
    session: AsyncSession = SESSION_DEP,
    dispatcher: NotificationDispatcher = DISPATCHER_DEP,
) -> TaskRead:
    """Create an open, paused task; watchers other than the creator are notified."""
    task = await task_timer.create_task(
        session,
        title=payload.title,
        description=payload.description,
        priority=payload.priority,
        department=payload.department,
        created_by=actor.id,
        assigned_to=payload.assigned_to,
        assignee_ids=payload.assignee_ids,
        due_at=payload.due_at,
        custom_duration_seconds=payload.custom_duration_seconds,
        dispatcher=dispatcher,
    )
    return _task_read(task)


@router.get("/{task_id}", response_model=TaskRead)
async def read_task(task: Task = TASK_DEP, _actor: Profile = ACTOR_DEP) -> TaskRead:
    return _task_read(task)


@router.get("/{task_id}/timer", response_model=TaskTimerRead)
async def read_task_timer(task: Task = TASK_DEP, _actor: Profile = ACTOR_DEP) -> TaskTimerRead:
    """Countdown snapshot computed at request time from the stored task."""
    snapshot = remaining(task, utcnow())
    return TaskTimerRead(
        task_id=task.id,
        state=snapshot.state,
        is_running=task.is_running,
        is_overdue=snapshot.is_overdue,
        is_urgent=snapshot.is_urgent,
        seconds_remaining=snapshot.seconds_remaining,
        deadline_at=snapshot.deadline_at,
        remaining_text=snapshot.text,
        time_spent_seconds=task.time_spent_seconds,
        time_spent_text=format_time_spent(task.time_spent_seconds),
    )


@router.post("/{task_id}/start", response_model=TaskRead, responses=TRANSITION_RESPONSES)
async def start_task(
    task_id: UUID,
    actor: Profile = ACTOR_DEP,
    session: AsyncSession = SESSION_DEP,
    dispatcher: NotificationDispatcher = DISPATCHER_DEP,
) -> TaskRead:
    task = await task_timer.start_task(
        session,
        task_id,
        actor_id=actor.id,
        dispatcher=dispatcher,
    )
    return _task_read(task)


@router.post("/{task_id}/pause", response_model=TaskRead, responses=TRANSITION_RESPONSES)
async def pause_task(
    task_id: UUID,
    mark_pending: bool = Query(default=True),
    actor: Profile = ACTOR_DEP,
    session: AsyncSession = SESSION_DEP,
    dispatcher: NotificationDispatcher = DISPATCHER_DEP,
) -> TaskRead:
    task = await task_timer.pause_task(
        session,
        task_id,
        actor_id=actor.id,
        mark_pending=mark_pending,
        dispatcher=dispatcher,
    )
    return _task_read(task)


@router.post("/{task_id}/close", response_model=TaskRead, responses=TRANSITION_RESPONSES)
async def close_task(
    task_id: UUID,
    actor: Profile = ACTOR_DEP,
    session: AsyncSession = SESSION_DEP,
    dispatcher: NotificationDispatcher = DISPATCHER_DEP,
) -> TaskRead:
    """Close a task; only supervisory callers hold approval authority."""
    task = await task_timer.close_task(
        session,
        task_id,
        approver=actor,
        dispatcher=dispatcher,
    )
    return _task_read(task)


@router.post("/{task_id}/escalate", response_model=EscalationOutcomeRead)
async def escalate_task(
    task_id: UUID,
    _actor: Profile = ACTOR_DEP,
    session: AsyncSession = SESSION_DEP,
    dispatcher: NotificationDispatcher = DISPATCHER_DEP,
) -> EscalationOutcomeRead:
    """Opportunistic client-side trigger; safe to call any number of times."""
    outcome = await escalate_overdue_task(session, task_id=task_id, dispatcher=dispatcher)
    return EscalationOutcomeRead(
        status=outcome.status,
        task_id=outcome.task_id,
        escalated_to=outcome.target_id,
        escalated_at=outcome.escalated_at,
        notified=outcome.notified,
        alerted=outcome.alerted,
    )
