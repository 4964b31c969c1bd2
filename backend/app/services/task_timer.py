"""Task timer state machine and its persisted service wrappers.

The pure transitions (`start`, `pause`, `close`) mutate a `Task` in place and
raise `InvalidTransition` when a rule is violated. The async wrappers load the
row under a lock, apply the transition, commit, and then notify watchers on a
best-effort basis; a notification problem never undoes a committed transition.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlmodel import col

from app.core.exceptions import InvalidTransition, TaskNotFound
from app.core.logging import get_logger
from app.core.time import as_naive_utc, isoformat_utc, utcnow
from app.db.session import storage_errors
from app.models.profiles import SUPERVISORY_ROLES, Profile
from app.models.task_assignees import TaskAssignee
from app.models.tasks import TASK_PRIORITIES, Task
from app.services.notifications.dispatcher import QueuedNotificationDispatcher
from app.services.sla_clock import effective_deadline, elapsed_since_start

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession

    from app.services.notifications.dispatcher import NotificationDispatcher
    from app.services.notifications.queue import NotificationKind

logger = get_logger(__name__)


def can_approve_closure(profile: Profile | None) -> bool:
    """Only supervisory roles may approve closing a task."""
    return profile is not None and profile.role in SUPERVISORY_ROLES


def _fold_elapsed(task: Task, now: datetime) -> None:
    if task.started_at is None:
        return
    task.time_spent_seconds = (task.time_spent_seconds or 0) + elapsed_since_start(
        task.started_at,
        now,
    )
    task.started_at = None


def start(task: Task, now: datetime) -> None:
    if task.is_closed:
        raise InvalidTransition("start", "task is closed")
    if task.is_running:
        raise InvalidTransition("start", "timer is already running")
    now = as_naive_utc(now)
    task.started_at = now
    task.status = "open"
    task.updated_at = now


def pause(task: Task, now: datetime, *, mark_pending: bool = True) -> None:
    if task.is_closed:
        raise InvalidTransition("pause", "task is closed")
    if not task.is_running:
        raise InvalidTransition("pause", "timer is not running")
    now = as_naive_utc(now)
    _fold_elapsed(task, now)
    if mark_pending:
        task.status = "pending"
    task.updated_at = now


def close(task: Task, now: datetime, *, approver_id: UUID | None, can_approve: bool) -> None:
    if task.is_closed:
        raise InvalidTransition("close", "task is already closed")
    if not can_approve:
        raise InvalidTransition("close", "approval authority required")
    now = as_naive_utc(now)
    _fold_elapsed(task, now)
    task.status = "closed"
    task.closed_approved_by = approver_id
    task.closed_at = now
    task.updated_at = now


async def task_watchers(session: AsyncSession, task: Task) -> list[UUID]:
    """Return the primary assignee followed by team assignees, deduplicated."""
    watchers: list[UUID] = []
    if task.assigned_to is not None:
        watchers.append(task.assigned_to)
    rows = await (
        TaskAssignee.objects.filter_by(task_id=task.id)
        .order_by(col(TaskAssignee.assigned_at), col(TaskAssignee.id))
        .all(session)
    )
    for row in rows:
        if row.user_id not in watchers:
            watchers.append(row.user_id)
    return watchers


async def _notify_watchers(
    session: AsyncSession,
    task: Task,
    *,
    kind: NotificationKind,
    payload: dict[str, Any],
    exclude: UUID | None,
    dispatcher: NotificationDispatcher | None,
) -> int:
    sink = dispatcher or QueuedNotificationDispatcher()
    try:
        watchers = await task_watchers(session, task)
    except Exception:
        logger.warning(
            "task.notify.watchers_lookup_failed",
            extra={"task_id": str(task.id), "kind": kind},
            exc_info=True,
        )
        return 0
    sent = 0
    for recipient_id in watchers:
        if recipient_id == exclude:
            continue
        try:
            outcome = await sink.notify(recipient_id, kind, payload)
        except Exception:
            logger.warning(
                "task.notify.failed",
                extra={"task_id": str(task.id), "kind": kind, "recipient_id": str(recipient_id)},
                exc_info=True,
            )
            continue
        if outcome.ok:
            sent += 1
        else:
            logger.warning(
                "task.notify.not_delivered",
                extra={
                    "task_id": str(task.id),
                    "kind": kind,
                    "recipient_id": str(recipient_id),
                    "error": outcome.error,
                },
            )
    return sent


def _status_payload(task: Task) -> dict[str, Any]:
    return {
        "task_id": str(task.id),
        "title": task.title,
        "status": task.status,
        "updated_at": isoformat_utc(task.updated_at),
    }


async def _load_for_update(session: AsyncSession, task_id: UUID) -> Task:
    task = await Task.objects.by_id(task_id).for_update().fresh().first(session)
    if task is None:
        raise TaskNotFound(task_id)
    return task


async def _apply(
    session: AsyncSession,
    task_id: UUID,
    transition: str,
    apply: Any,
) -> Task:
    with storage_errors(f"task.{transition}"):
        task = await _load_for_update(session, task_id)
        try:
            apply(task)
        except InvalidTransition:
            await session.rollback()
            raise
        session.add(task)
        await session.commit()
        await session.refresh(task)
    logger.info(
        f"task.{transition}",
        extra={"task_id": str(task.id), "status": task.status},
    )
    return task


async def start_task(
    session: AsyncSession,
    task_id: UUID,
    *,
    actor_id: UUID | None = None,
    now: datetime | None = None,
    dispatcher: NotificationDispatcher | None = None,
) -> Task:
    at = now or utcnow()
    task = await _apply(session, task_id, "start", lambda t: start(t, at))
    await _notify_watchers(
        session,
        task,
        kind="status_change",
        payload=_status_payload(task),
        exclude=actor_id,
        dispatcher=dispatcher,
    )
    return task


async def pause_task(
    session: AsyncSession,
    task_id: UUID,
    *,
    actor_id: UUID | None = None,
    mark_pending: bool = True,
    now: datetime | None = None,
    dispatcher: NotificationDispatcher | None = None,
) -> Task:
    at = now or utcnow()
    task = await _apply(
        session,
        task_id,
        "pause",
        lambda t: pause(t, at, mark_pending=mark_pending),
    )
    await _notify_watchers(
        session,
        task,
        kind="status_change",
        payload=_status_payload(task),
        exclude=actor_id,
        dispatcher=dispatcher,
    )
    return task


async def close_task(
    session: AsyncSession,
    task_id: UUID,
    *,
    approver: Profile | None,
    now: datetime | None = None,
    dispatcher: NotificationDispatcher | None = None,
) -> Task:
    at = now or utcnow()
    approver_id = approver.id if approver is not None else None
    allowed = can_approve_closure(approver)
    task = await _apply(
        session,
        task_id,
        "close",
        lambda t: close(t, at, approver_id=approver_id, can_approve=allowed),
    )
    await _notify_watchers(
        session,
        task,
        kind="status_change",
        payload=_status_payload(task),
        exclude=approver_id,
        dispatcher=dispatcher,
    )
    return task


async def create_task(
    session: AsyncSession,
    *,
    title: str,
    created_by: UUID | None,
    description: str | None = None,
    priority: str = "p2",
    department: str = "Sales",
    assigned_to: UUID | None = None,
    assignee_ids: Iterable[UUID] = (),
    due_at: datetime | None = None,
    custom_duration_seconds: int | None = None,
    now: datetime | None = None,
    dispatcher: NotificationDispatcher | None = None,
) -> Task:
    """Persist a new open, paused task and tell its watchers it was assigned."""
    if priority not in TASK_PRIORITIES:
        raise ValueError(f"priority must be one of {TASK_PRIORITIES}")
    if custom_duration_seconds is not None and custom_duration_seconds < 1:
        raise ValueError("custom_duration_seconds must be positive")
    at = as_naive_utc(now or utcnow())
    task = Task(
        title=title,
        description=description,
        status="open",
        priority=priority,
        department=department,
        created_by=created_by,
        assigned_to=assigned_to,
        due_at=as_naive_utc(due_at) if due_at is not None else None,
        custom_duration_seconds=custom_duration_seconds,
        created_at=at,
        updated_at=at,
    )
    with storage_errors("task.create"):
        session.add(task)
        await session.flush()
        seen: set[UUID] = set()
        for user_id in assignee_ids:
            if user_id in seen:
                continue
            seen.add(user_id)
            session.add(
                TaskAssignee(task_id=task.id, user_id=user_id, assigned_at=at, assigned_by=created_by),
            )
        await session.commit()
        await session.refresh(task)
    logger.info(
        "task.created",
        extra={"task_id": str(task.id), "assigned_to": str(task.assigned_to)},
    )
    deadline = effective_deadline(task)
    await _notify_watchers(
        session,
        task,
        kind="task_assigned",
        payload={
            "task_id": str(task.id),
            "title": task.title,
            "created_at": isoformat_utc(task.created_at),
            "deadline_at": isoformat_utc(deadline),
        },
        exclude=created_by,
        dispatcher=dispatcher,
    )
    return task
