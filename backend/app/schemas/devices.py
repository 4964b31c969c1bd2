"""Schemas for push device registration."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import Field, field_validator
from sqlmodel import SQLModel

RUNTIME_ANNOTATION_TYPES = (datetime, UUID)


class DeviceRegister(SQLModel):
    expo_push_token: str = Field(min_length=1, max_length=255)

    @field_validator("expo_push_token")
    @classmethod
    def _strip_token(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("expo_push_token must not be blank")
        return value


class DeviceRead(SQLModel):
    """Stored push registration for the calling user."""

    id: UUID
    user_id: UUID
    expo_push_token: str
    created_at: datetime
    last_seen_at: datetime
