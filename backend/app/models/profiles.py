"""Profile model for staff and supervisory users."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlmodel import Field

from app.core.time import utcnow
from app.models.base import QueryModel

RUNTIME_ANNOTATION_TYPES = (datetime,)

USER_ROLES = ("admin", "department_head", "supervisor", "staff")
# Roles that receive escalations, approve closures, and get escalation alert mail.
SUPERVISORY_ROLES = ("supervisor", "department_head", "admin")


class Profile(QueryModel, table=True):
    """User profile carrying the role used for escalation and approval decisions."""

    __tablename__ = "profiles"  # pyright: ignore[reportAssignmentType]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    full_name: str | None = None
    email: str | None = Field(default=None, index=True)
    role: str = Field(default="staff", index=True)
    staff_id: str | None = None
    department: str = Field(default="Sales")
    created_at: datetime = Field(default_factory=utcnow, index=True)

    @property
    def is_supervisory(self) -> bool:
        return self.role in SUPERVISORY_ROLES

    @property
    def display_name(self) -> str:
        if self.full_name:
            return self.full_name
        if self.email:
            return self.email.split("@", 1)[0]
        return "Admin"
