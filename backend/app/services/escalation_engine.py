"""Exactly-once escalation of overdue tasks.

Any number of actors (client-triggered escalations and the periodic sweeper)
may call `escalate_overdue_task` for the same task at the same time. The only
synchronization point is the conditional claim update: the single caller whose
``UPDATE ... WHERE escalated_at IS NULL`` touches a row owns the escalation and
is the only one that dispatches notifications. Notification failures are
logged and never roll the claim back.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Literal
from uuid import UUID

from sqlalchemy import update
from sqlmodel import col

from app.core.config import settings
from app.core.exceptions import DispatchFailure
from app.core.logging import get_logger
from app.core.time import as_naive_utc, isoformat_utc, utcnow
from app.db.session import storage_errors
from app.models.profiles import SUPERVISORY_ROLES, Profile
from app.models.tasks import Task
from app.services.notifications.dispatcher import (
    DispatchOutcome,
    QueuedNotificationDispatcher,
    alert_key,
)
from app.services.notifications.queue import EscalationAlert
from app.services.sla_clock import effective_deadline, is_escalation_candidate

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession

    from app.services.notifications.dispatcher import NotificationDispatcher

logger = get_logger(__name__)

EscalationStatus = Literal["escalated", "claim_lost", "not_eligible", "not_found"]


@dataclass(frozen=True)
class EscalationOutcome:
    """Result of one escalation attempt for one task."""

    status: EscalationStatus
    task_id: UUID
    target_id: UUID | None = None
    escalated_at: datetime | None = None
    notified: bool = False
    alerted: bool = False

    @property
    def claimed(self) -> bool:
        return self.status == "escalated"


async def select_escalation_target(session: AsyncSession) -> Profile | None:
    """Return the earliest-created supervisory profile, or None when there is none."""
    return await (
        Profile.objects.filter(col(Profile.role).in_(SUPERVISORY_ROLES))
        .order_by(col(Profile.created_at), col(Profile.id))
        .first(session)
    )


async def claim_escalation(
    session: AsyncSession,
    *,
    task_id: UUID,
    target_id: UUID | None,
    now: datetime,
) -> bool:
    """Mark an open task escalated if nobody has yet; True when this call won the claim."""
    statement = (
        update(Task)
        .where(
            col(Task.id) == task_id,
            col(Task.escalated_at).is_(None),
            col(Task.status) != "closed",
        )
        .values(escalated_at=now, escalated_to=target_id, updated_at=now)
    )
    connection = await session.connection()
    result = await connection.execute(statement)
    if result.rowcount == 1:
        await session.commit()
        return True
    await session.rollback()
    return False


async def _dispatch(
    call: Callable[[], Awaitable[DispatchOutcome]],
    *,
    channel: str,
    task_id: UUID,
) -> bool:
    timeout = settings.notification_dispatch_timeout_seconds
    try:
        outcome = await asyncio.wait_for(call(), timeout=timeout)
    except TimeoutError:
        failure = DispatchFailure(f"{channel} dispatch timed out after {timeout}s")
    except Exception as exc:
        failure = DispatchFailure(f"{channel} dispatch raised {exc.__class__.__name__}: {exc}")
    else:
        if outcome.ok:
            return True
        failure = DispatchFailure(f"{channel} dispatch failed: {outcome.error}")
    logger.warning(
        "escalation.dispatch.failed",
        extra={"task_id": str(task_id), "channel": channel, "error": str(failure)},
    )
    return False


async def escalate_overdue_task(
    session: AsyncSession,
    *,
    task_id: UUID,
    now: datetime | None = None,
    dispatcher: NotificationDispatcher | None = None,
) -> EscalationOutcome:
    """Escalate one task if it is still overdue and unclaimed.

    Eligibility is recomputed from a fresh read, so a caller's cached overdue
    flag is never trusted. Raises `StorageUnavailable` on database failures.
    """
    at = as_naive_utc(now or utcnow())

    with storage_errors("escalation.read"):
        task = await Task.objects.by_id(task_id).fresh().first(session)
    if task is None:
        return EscalationOutcome(status="not_found", task_id=task_id)
    if not is_escalation_candidate(task, at):
        logger.debug(
            "escalation.not_eligible",
            extra={"task_id": str(task_id), "status": task.status},
        )
        return EscalationOutcome(status="not_eligible", task_id=task_id)

    deadline_at = isoformat_utc(effective_deadline(task))
    title = task.title

    with storage_errors("escalation.claim"):
        target = await select_escalation_target(session)
        target_id = target.id if target is not None else None
        won = await claim_escalation(session, task_id=task_id, target_id=target_id, now=at)
        if not won:
            current = await Task.objects.by_id(task_id).fresh().first(session)
            current_status = current.status if current is not None else None
            escalated = current is not None and current.escalated_at is not None
            await session.rollback()

    if not won:
        if current is None:
            return EscalationOutcome(status="not_found", task_id=task_id)
        if escalated:
            logger.debug("escalation.claim.lost", extra={"task_id": str(task_id)})
            return EscalationOutcome(status="claim_lost", task_id=task_id)
        # Closed between the eligibility read and the claim.
        logger.debug(
            "escalation.not_eligible",
            extra={"task_id": str(task_id), "status": current_status},
        )
        return EscalationOutcome(status="not_eligible", task_id=task_id)

    logger.info(
        "escalation.claim.won",
        extra={
            "task_id": str(task_id),
            "escalated_to": str(target_id) if target_id else None,
            "deadline_at": deadline_at,
        },
    )

    sink = dispatcher or QueuedNotificationDispatcher()
    escalated_at = isoformat_utc(at) or ""
    notified = False
    if target_id is None:
        logger.warning("escalation.no_target", extra={"task_id": str(task_id)})
    else:
        payload = {
            "task_id": str(task_id),
            "title": title,
            "deadline_at": deadline_at,
            "escalated_at": escalated_at,
        }
        notified = await _dispatch(
            lambda: sink.notify(target_id, "escalation", payload),
            channel="push",
            task_id=task_id,
        )

    alert = EscalationAlert(
        task_id=task_id,
        task_title=title,
        deadline_at=deadline_at,
        idempotency_key=alert_key(task_id, escalated_at),
    )
    alerted = await _dispatch(
        lambda: sink.alert_managers(alert),
        channel="mail",
        task_id=task_id,
    )

    return EscalationOutcome(
        status="escalated",
        task_id=task_id,
        target_id=target_id,
        escalated_at=at,
        notified=notified,
        alerted=alerted,
    )
