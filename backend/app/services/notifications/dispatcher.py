"""Notification dispatcher contract and its Redis-queue backed implementation.

Callers hand the dispatcher a recipient, a template kind and a payload and get
back a `DispatchOutcome`; a dispatcher never raises for delivery problems.
Delivery itself happens later in the queue worker.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Protocol
from uuid import UUID

from app.core.config import settings
from app.core.exceptions import DispatchFailure
from app.core.logging import get_logger
from app.services.notifications.queue import (
    NOTIFICATION_KINDS,
    EscalationAlert,
    NotificationKind,
    TaskNotification,
    build_idempotency_key,
    enqueue_alert,
    enqueue_notification,
)

logger = get_logger(__name__)


@dataclass(frozen=True)
class DispatchOutcome:
    ok: bool
    idempotency_key: str
    error: str | None = None


class NotificationDispatcher(Protocol):
    """Fire-and-forget notification sink used by timer and escalation services."""

    async def notify(
        self,
        recipient_id: UUID,
        kind: NotificationKind,
        payload: dict[str, Any],
    ) -> DispatchOutcome: ...

    async def alert_managers(self, alert: EscalationAlert) -> DispatchOutcome: ...


def notification_discriminator(kind: str, payload: dict[str, Any]) -> str:
    """Pick the payload field that distinguishes repeats of the same event kind."""
    if kind == "escalation":
        return str(payload.get("escalated_at", ""))
    if kind == "status_change":
        return f"{payload.get('status', '')}@{payload.get('updated_at', '')}"
    return str(payload.get("created_at", ""))


def notification_key(recipient_id: UUID, kind: str, payload: dict[str, Any]) -> str:
    return build_idempotency_key(
        kind,
        task_id=UUID(str(payload["task_id"])),
        recipient_id=recipient_id,
        discriminator=notification_discriminator(kind, payload),
    )


def alert_key(task_id: UUID, escalated_at: str) -> str:
    return build_idempotency_key(
        "escalation_alert",
        task_id=task_id,
        recipient_id=None,
        discriminator=escalated_at,
    )


class QueuedNotificationDispatcher:
    """Serialize notifications onto the Redis queue within a bounded timeout."""

    def __init__(self, *, timeout_seconds: float | None = None) -> None:
        self.timeout_seconds = timeout_seconds or settings.notification_dispatch_timeout_seconds

    async def _enqueue(self, func: Any, envelope: Any, idempotency_key: str) -> DispatchOutcome:
        try:
            await asyncio.wait_for(
                asyncio.to_thread(func, envelope),
                timeout=self.timeout_seconds,
            )
        except TimeoutError:
            error = DispatchFailure(f"enqueue timed out after {self.timeout_seconds}s")
            logger.warning(
                "notification.dispatch.timeout",
                extra={"idempotency_key": idempotency_key, "error": str(error)},
            )
            return DispatchOutcome(ok=False, idempotency_key=idempotency_key, error=str(error))
        except Exception as exc:
            logger.warning(
                "notification.dispatch.failed",
                extra={"idempotency_key": idempotency_key, "error": str(exc)},
                exc_info=True,
            )
            return DispatchOutcome(ok=False, idempotency_key=idempotency_key, error=str(exc))
        return DispatchOutcome(ok=True, idempotency_key=idempotency_key)

    async def notify(
        self,
        recipient_id: UUID,
        kind: NotificationKind,
        payload: dict[str, Any],
    ) -> DispatchOutcome:
        if kind not in NOTIFICATION_KINDS:
            raise ValueError(f"Unknown notification kind {kind!r}")
        key = notification_key(recipient_id, kind, payload)
        notification = TaskNotification(
            kind=kind,
            recipient_id=recipient_id,
            task_id=UUID(str(payload["task_id"])),
            idempotency_key=key,
            payload=payload,
        )
        return await self._enqueue(enqueue_notification, notification, key)

    async def alert_managers(self, alert: EscalationAlert) -> DispatchOutcome:
        return await self._enqueue(enqueue_alert, alert, alert.idempotency_key)
