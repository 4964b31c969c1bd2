"""Notification envelopes and their Redis queue persistence helpers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal
from uuid import UUID

from app.core.config import settings
from app.core.logging import get_logger
from app.services.queue import QueuedTask, enqueue_task
from app.services.queue import requeue_if_failed as generic_requeue_if_failed

logger = get_logger(__name__)

NOTIFICATION_TASK_TYPE = "task_notification"
ESCALATION_ALERT_TASK_TYPE = "escalation_alert"

NotificationKind = Literal["task_assigned", "escalation", "status_change"]
NOTIFICATION_KINDS: frozenset[str] = frozenset({"task_assigned", "escalation", "status_change"})


def build_idempotency_key(
    kind: str,
    *,
    task_id: UUID,
    recipient_id: UUID | None,
    discriminator: str,
) -> str:
    """Stable key identifying one logical notification, used for delivery dedupe."""
    recipient = str(recipient_id) if recipient_id is not None else "-"
    return f"{kind}:{task_id}:{recipient}:{discriminator}"


@dataclass(frozen=True)
class TaskNotification:
    """Single-recipient push notification about a task event."""

    kind: NotificationKind
    recipient_id: UUID
    task_id: UUID
    idempotency_key: str
    payload: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    attempts: int = 0


@dataclass(frozen=True)
class EscalationAlert:
    """Broadcast mail alert to every supervisory user about an escalated task."""

    task_id: UUID
    task_title: str
    deadline_at: str | None
    idempotency_key: str
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    attempts: int = 0


def _task_from_notification(notification: TaskNotification) -> QueuedTask:
    return QueuedTask(
        task_type=NOTIFICATION_TASK_TYPE,
        payload={
            "kind": notification.kind,
            "recipient_id": str(notification.recipient_id),
            "task_id": str(notification.task_id),
            "idempotency_key": notification.idempotency_key,
            "payload": notification.payload,
        },
        created_at=notification.created_at,
        attempts=notification.attempts,
    )


def _task_from_alert(alert: EscalationAlert) -> QueuedTask:
    return QueuedTask(
        task_type=ESCALATION_ALERT_TASK_TYPE,
        payload={
            "task_id": str(alert.task_id),
            "task_title": alert.task_title,
            "deadline_at": alert.deadline_at,
            "idempotency_key": alert.idempotency_key,
        },
        created_at=alert.created_at,
        attempts=alert.attempts,
    )


def decode_notification_task(task: QueuedTask) -> TaskNotification:
    """Decode a QueuedTask into a TaskNotification."""
    if task.task_type != NOTIFICATION_TASK_TYPE:
        raise ValueError(
            f"Unexpected task_type={task.task_type!r}; expected {NOTIFICATION_TASK_TYPE!r}",
        )
    p: dict[str, Any] = task.payload
    kind = str(p["kind"])
    if kind not in NOTIFICATION_KINDS:
        raise ValueError(f"Unknown notification kind {kind!r}")
    return TaskNotification(
        kind=kind,  # type: ignore[arg-type]
        recipient_id=UUID(p["recipient_id"]),
        task_id=UUID(p["task_id"]),
        idempotency_key=str(p["idempotency_key"]),
        payload=p.get("payload", {}),
        created_at=task.created_at,
        attempts=task.attempts,
    )


def decode_alert_task(task: QueuedTask) -> EscalationAlert:
    """Decode a QueuedTask into an EscalationAlert."""
    if task.task_type != ESCALATION_ALERT_TASK_TYPE:
        raise ValueError(
            f"Unexpected task_type={task.task_type!r}; expected {ESCALATION_ALERT_TASK_TYPE!r}",
        )
    p: dict[str, Any] = task.payload
    return EscalationAlert(
        task_id=UUID(p["task_id"]),
        task_title=str(p["task_title"]),
        deadline_at=p.get("deadline_at"),
        idempotency_key=str(p["idempotency_key"]),
        created_at=task.created_at,
        attempts=task.attempts,
    )


def enqueue_notification(notification: TaskNotification) -> bool:
    """Persist a task notification in the Redis queue; raises on Redis errors."""
    enqueue_task(
        _task_from_notification(notification),
        settings.rq_queue_name,
        redis_url=settings.rq_redis_url,
    )
    logger.info(
        "notification.enqueued",
        extra={
            "kind": notification.kind,
            "task_id": str(notification.task_id),
            "recipient_id": str(notification.recipient_id),
            "idempotency_key": notification.idempotency_key,
        },
    )
    return True


def enqueue_alert(alert: EscalationAlert) -> bool:
    """Persist an escalation alert in the Redis queue; raises on Redis errors."""
    enqueue_task(_task_from_alert(alert), settings.rq_queue_name, redis_url=settings.rq_redis_url)
    logger.info(
        "notification.alert.enqueued",
        extra={"task_id": str(alert.task_id), "idempotency_key": alert.idempotency_key},
    )
    return True


def requeue_notification(notification: TaskNotification, *, delay_seconds: float = 0) -> bool:
    """Requeue a failed notification with capped retries."""
    return _requeue(_task_from_notification(notification), delay_seconds=delay_seconds)


def requeue_alert(alert: EscalationAlert, *, delay_seconds: float = 0) -> bool:
    """Requeue a failed escalation alert with capped retries."""
    return _requeue(_task_from_alert(alert), delay_seconds=delay_seconds)


def _requeue(task: QueuedTask, *, delay_seconds: float) -> bool:
    try:
        return generic_requeue_if_failed(
            task,
            settings.rq_queue_name,
            max_retries=settings.rq_dispatch_max_retries,
            redis_url=settings.rq_redis_url,
            delay_seconds=delay_seconds,
        )
    except Exception as exc:
        logger.warning(
            "notification.requeue_failed",
            extra={"task_type": task.task_type, "error": str(exc)},
        )
        return False
