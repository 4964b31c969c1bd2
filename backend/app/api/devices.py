"""Push device registration for the calling user."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter

from app.api.deps import ACTOR_DEP, SESSION_DEP
from app.models.profiles import Profile
from app.schemas.devices import DeviceRead, DeviceRegister
from app.services.devices import register_device

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession

router = APIRouter(prefix="/devices", tags=["devices"])


@router.post("", response_model=DeviceRead)
async def register_push_device(
    payload: DeviceRegister,
    actor: Profile = ACTOR_DEP,
    session: AsyncSession = SESSION_DEP,
) -> DeviceRead:
    """Register the caller's Expo push token; repeat calls only refresh `last_seen_at`."""
    device = await register_device(
        session,
        user_id=actor.id,
        expo_push_token=payload.expo_push_token,
    )
    return DeviceRead.model_validate(device, from_attributes=True)
