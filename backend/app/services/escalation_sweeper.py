"""Periodic backstop that escalates every overdue, unescalated task."""

from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

from redis import Redis
from rq_scheduler import Scheduler  # type: ignore[import-untyped]
from sqlmodel import and_, col, or_

from app.core.config import settings
from app.core.logging import get_logger
from app.core.time import as_naive_utc, utcnow
from app.db.session import async_session_maker, storage_errors
from app.models.tasks import Task
from app.services.escalation_engine import escalate_overdue_task
from app.services.sla_clock import is_escalation_candidate

if TYPE_CHECKING:
    from uuid import UUID

    from sqlalchemy.ext.asyncio import async_sessionmaker
    from sqlmodel.ext.asyncio.session import AsyncSession

    from app.services.notifications.dispatcher import NotificationDispatcher

logger = get_logger(__name__)


@dataclass
class SweepReport:
    scanned: int = 0
    overdue: int = 0
    escalated: int = 0
    claim_lost: int = 0
    not_eligible: int = 0
    failed: int = 0

    @property
    def processed(self) -> int:
        return self.escalated

    def as_dict(self) -> dict[str, Any]:
        return {**asdict(self), "processed": self.processed}


async def _candidate_ids(
    session_maker: async_sessionmaker[AsyncSession],
    *,
    now: datetime,
    limit: int,
) -> tuple[int, list[UUID]]:
    """Return (rows scanned, up to `limit` ids that are overdue by the canonical formula).

    Rows are paged by (created_at, id) so running timers that are not yet due
    never crowd overdue rows out of a run.
    """
    statement_filters = [
        col(Task.status) != "closed",
        col(Task.escalated_at).is_(None),
        # Pre-filter to rows that can have passed a deadline by now.
        or_(
            col(Task.due_at) <= now,
            and_(
                col(Task.custom_duration_seconds).is_not(None),
                col(Task.started_at).is_not(None),
            ),
        ),
    ]
    scanned = 0
    candidates: list[UUID] = []
    cursor: tuple[datetime, UUID] | None = None
    async with session_maker() as session:
        while len(candidates) < limit:
            page_filters = list(statement_filters)
            if cursor is not None:
                page_filters.append(
                    or_(
                        col(Task.created_at) > cursor[0],
                        and_(col(Task.created_at) == cursor[0], col(Task.id) > cursor[1]),
                    ),
                )
            with storage_errors("sweep.scan"):
                rows = await (
                    Task.objects.filter(*page_filters)
                    .order_by(col(Task.created_at), col(Task.id))
                    .limit(limit)
                    .all(session)
                )
            scanned += len(rows)
            for row in rows:
                if is_escalation_candidate(row, now) and len(candidates) < limit:
                    candidates.append(row.id)
            if len(rows) < limit:
                break
            cursor = (rows[-1].created_at, rows[-1].id)
    return scanned, candidates


async def sweep_overdue_tasks(
    *,
    session_maker: async_sessionmaker[AsyncSession] | None = None,
    now: datetime | None = None,
    dispatcher: NotificationDispatcher | None = None,
    limit: int | None = None,
) -> SweepReport:
    """Run the escalation protocol once for every overdue candidate.

    Each task gets its own session; a failure on one task is logged and
    counted without stopping the batch. Nothing is retried within a run.
    """
    maker = session_maker or async_session_maker
    at = as_naive_utc(now or utcnow())
    batch_limit = limit or settings.escalation_sweep_batch_limit
    report = SweepReport()

    scanned, candidate_ids = await _candidate_ids(maker, now=at, limit=batch_limit)
    report.scanned = scanned
    report.overdue = len(candidate_ids)

    for task_id in candidate_ids:
        try:
            async with maker() as session:
                outcome = await escalate_overdue_task(
                    session,
                    task_id=task_id,
                    now=at,
                    dispatcher=dispatcher,
                )
        except Exception:
            report.failed += 1
            logger.exception("escalation.sweep.task_failed", extra={"task_id": str(task_id)})
            continue
        if outcome.status == "escalated":
            report.escalated += 1
        elif outcome.status == "claim_lost":
            report.claim_lost += 1
        else:
            report.not_eligible += 1

    logger.info("escalation.sweep.complete", extra=report.as_dict())
    return report


def run_escalation_sweep() -> int:
    """RQ job entrypoint; returns the number of tasks escalated."""
    report = asyncio.run(sweep_overdue_tasks())
    return report.processed


def bootstrap_escalation_sweep_schedule(interval_seconds: int | None = None) -> None:
    """Register the recurring sweep job and keep it idempotent."""
    connection = Redis.from_url(settings.rq_redis_url)
    scheduler = Scheduler(queue_name=settings.rq_queue_name, connection=connection)

    for job in scheduler.get_jobs():
        if job.id == settings.escalation_sweep_schedule_id:
            scheduler.cancel(job)

    effective_interval_seconds = (
        settings.escalation_sweep_interval_seconds if interval_seconds is None else interval_seconds
    )

    scheduler.schedule(
        datetime.now(tz=timezone.utc) + timedelta(seconds=5),
        func=run_escalation_sweep,
        interval=effective_interval_seconds,
        repeat=None,
        id=settings.escalation_sweep_schedule_id,
        queue_name=settings.rq_queue_name,
    )
    logger.info(
        "escalation.sweep.scheduled",
        extra={
            "schedule_id": settings.escalation_sweep_schedule_id,
            "interval_seconds": effective_interval_seconds,
        },
    )
