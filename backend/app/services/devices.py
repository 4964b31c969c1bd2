"""Push device registration."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError

from app.core.logging import get_logger
from app.core.time import as_naive_utc, utcnow
from app.db.session import storage_errors
from app.models.devices import Device

if TYPE_CHECKING:
    from uuid import UUID

    from sqlmodel.ext.asyncio.session import AsyncSession

logger = get_logger(__name__)


async def _existing(session: AsyncSession, user_id: UUID, token: str) -> Device | None:
    return await (
        Device.objects.filter_by(user_id=user_id, expo_push_token=token).fresh().first(session)
    )


async def register_device(
    session: AsyncSession,
    *,
    user_id: UUID,
    expo_push_token: str,
    now: datetime | None = None,
) -> Device:
    """Upsert a (user, token) registration and bump its `last_seen_at`."""
    at = as_naive_utc(now or utcnow())
    token = expo_push_token.strip()
    with storage_errors("device.register"):
        device = await _existing(session, user_id, token)
        if device is None:
            device = Device(user_id=user_id, expo_push_token=token, created_at=at, last_seen_at=at)
            session.add(device)
            try:
                await session.commit()
            except IntegrityError:
                # Registered concurrently by another request; refresh that row instead.
                await session.rollback()
                device = await _existing(session, user_id, token)
                if device is None:
                    raise
                device.last_seen_at = at
                session.add(device)
                await session.commit()
        else:
            device.last_seen_at = at
            session.add(device)
            await session.commit()
        await session.refresh(device)
    logger.info(
        "device.registered",
        extra={"user_id": str(user_id), "device_id": str(device.id)},
    )
    return device
