"""Reusable FastAPI dependencies for caller identity, sessions and dispatch.

Authentication happens upstream: the gateway forwards the caller's profile id
in `X-User-Id`, and routes only resolve it to a `Profile` row here.
"""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import UUID

from fastapi import Depends, Header, HTTPException, status

from app.core.exceptions import TaskNotFound
from app.db.session import get_session, storage_errors
from app.models.profiles import Profile
from app.models.tasks import Task
from app.services.notifications.dispatcher import QueuedNotificationDispatcher

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession

    from app.services.notifications.dispatcher import NotificationDispatcher

USER_ID_HEADER = "X-User-Id"
SESSION_DEP = Depends(get_session)


async def get_current_profile(
    x_user_id: str | None = Header(default=None, alias=USER_ID_HEADER),
    session: AsyncSession = SESSION_DEP,
) -> Profile:
    """Resolve the forwarded caller id to a profile, or reject with 401."""
    if not x_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)
    try:
        profile_id = UUID(x_user_id.strip())
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED) from None
    with storage_errors("profile.read"):
        profile = await Profile.objects.by_id(profile_id).first(session)
    if profile is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)
    return profile


def get_dispatcher() -> NotificationDispatcher:
    return QueuedNotificationDispatcher()


async def get_task_or_404(task_id: UUID, session: AsyncSession = SESSION_DEP) -> Task:
    with storage_errors("task.read"):
        task = await Task.objects.by_id(task_id).first(session)
    if task is None:
        raise TaskNotFound(task_id)
    return task


ACTOR_DEP = Depends(get_current_profile)
DISPATCHER_DEP = Depends(get_dispatcher)
TASK_DEP = Depends(get_task_or_404)
