"""Schemas for escalation API payloads."""

from __future__ import annotations

from datetime import datetime
from typing import Literal
from uuid import UUID

from sqlmodel import SQLModel

RUNTIME_ANNOTATION_TYPES = (datetime, UUID)


class EscalationOutcomeRead(SQLModel):
    """Result of one escalation attempt; losing a claim is a normal outcome."""

    status: Literal["escalated", "claim_lost", "not_eligible", "not_found"]
    task_id: UUID
    escalated_to: UUID | None = None
    escalated_at: datetime | None = None
    notified: bool = False
    alerted: bool = False


class SweepReportRead(SQLModel):
    """Counts from one escalation sweep run."""

    processed: int
    scanned: int
    overdue: int
    escalated: int
    claim_lost: int
    not_eligible: int
    failed: int
