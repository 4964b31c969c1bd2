"""Escalation sweep endpoint for schedulers that prefer HTTP over RQ."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter, HTTPException, status

from app.api.deps import ACTOR_DEP, DISPATCHER_DEP
from app.models.profiles import Profile
from app.schemas.escalations import SweepReportRead
from app.services.escalation_sweeper import sweep_overdue_tasks

if TYPE_CHECKING:
    from app.services.notifications.dispatcher import NotificationDispatcher

router = APIRouter(prefix="/escalations", tags=["escalations"])


@router.post("/sweep", response_model=SweepReportRead)
async def run_sweep(
    actor: Profile = ACTOR_DEP,
    dispatcher: NotificationDispatcher = DISPATCHER_DEP,
) -> SweepReportRead:
    """Run one escalation sweep now and return its counts."""
    if not actor.is_supervisory:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN)
    report = await sweep_overdue_tasks(dispatcher=dispatcher)
    return SweepReportRead(**report.as_dict())
