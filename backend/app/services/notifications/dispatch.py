"""Queue worker handlers delivering task notifications and escalation alerts."""

from __future__ import annotations

from typing import Any

from sqlmodel import col

from app.core.config import settings
from app.core.exceptions import DispatchFailure
from app.core.logging import get_logger
from app.db.session import async_session_maker
from app.models.devices import Device
from app.models.profiles import SUPERVISORY_ROLES, Profile
from app.services.notifications.email import MailClient, build_escalation_message
from app.services.notifications.push import ExpoPushClient, PushMessage
from app.services.notifications.queue import (
    EscalationAlert,
    TaskNotification,
    decode_alert_task,
    decode_notification_task,
    requeue_alert,
    requeue_notification,
)
from app.services.queue import QueuedTask, claim_once, release_claim

logger = get_logger(__name__)

_STATUS_TEMPLATES: dict[str, tuple[str, str]] = {
    "closed": ("x Task closed", 'Task "{title}" was closed'),
    "open": ("> Task opened", '"{title}" is now open'),
    "pending": ("|| Task pending", '"{title}" is now pending'),
}


def render_push(notification: TaskNotification) -> tuple[str, str] | None:
    """Return the (title, body) pair for a notification, or None to skip it."""
    title = str(notification.payload.get("title", ""))
    if notification.kind == "task_assigned":
        return "New task assigned", f"You have been assigned task: {title}"
    if notification.kind == "escalation":
        return "Task escalated", f'"{title}" is overdue and was escalated to you'
    template = _STATUS_TEMPLATES.get(str(notification.payload.get("status", "")))
    if template is None:
        return None
    return template[0], template[1].format(title=title)


async def _device_tokens(recipient_id: Any) -> list[str]:
    async with async_session_maker() as session:
        devices = await Device.objects.filter_by(user_id=recipient_id).all(session)
    return sorted({device.expo_push_token for device in devices})


async def _deliver_push(
    notification: TaskNotification,
    *,
    client: ExpoPushClient | None = None,
) -> None:
    rendered = render_push(notification)
    if rendered is None:
        logger.info(
            "notification.push.skipped_unrendered",
            extra={"kind": notification.kind, "task_id": str(notification.task_id)},
        )
        return
    tokens = await _device_tokens(notification.recipient_id)
    if not tokens:
        logger.info(
            "notification.push.no_devices",
            extra={"recipient_id": str(notification.recipient_id), "kind": notification.kind},
        )
        return
    title, body = rendered
    data = {"task_id": str(notification.task_id), "kind": notification.kind}
    messages = [PushMessage(to=token, title=title, body=body, data=data) for token in tokens]
    await (client or ExpoPushClient()).send(messages)


async def deliver_notification(
    notification: TaskNotification,
    *,
    client: ExpoPushClient | None = None,
) -> bool:
    """Deliver one notification at most once per idempotency key.

    Returns False when the key was already claimed by an earlier delivery.
    """
    if not claim_once(
        notification.idempotency_key,
        ttl_seconds=settings.notification_dedupe_ttl_seconds,
    ):
        logger.info(
            "notification.push.duplicate_skipped",
            extra={"idempotency_key": notification.idempotency_key},
        )
        return False
    try:
        await _deliver_push(notification, client=client)
    except Exception:
        release_claim(notification.idempotency_key)
        raise
    logger.info(
        "notification.push.delivered",
        extra={
            "kind": notification.kind,
            "recipient_id": str(notification.recipient_id),
            "idempotency_key": notification.idempotency_key,
        },
    )
    return True


async def _alert_recipients() -> list[Profile]:
    async with async_session_maker() as session:
        return await (
            Profile.objects.filter(
                col(Profile.role).in_(SUPERVISORY_ROLES),
                col(Profile.email).is_not(None),
            )
            .order_by(col(Profile.created_at), col(Profile.id))
            .all(session)
        )


async def deliver_alert(alert: EscalationAlert, *, client: MailClient | None = None) -> int:
    """Mail the escalation alert to every supervisory profile; return the sent count."""
    mailer = client or MailClient()
    if not mailer.configured:
        logger.error(
            "notification.alert.mail_unconfigured",
            extra={"task_id": str(alert.task_id)},
        )
        return 0
    if not claim_once(alert.idempotency_key, ttl_seconds=settings.notification_dedupe_ttl_seconds):
        logger.info(
            "notification.alert.duplicate_skipped",
            extra={"idempotency_key": alert.idempotency_key},
        )
        return 0

    try:
        recipients = await _alert_recipients()
    except Exception:
        release_claim(alert.idempotency_key)
        raise
    sent = 0
    for profile in recipients:
        if not profile.email:
            continue
        message = build_escalation_message(
            recipient_email=profile.email,
            recipient_name=profile.display_name,
            task_id=str(alert.task_id),
            task_title=alert.task_title,
            deadline_at=alert.deadline_at,
        )
        try:
            await mailer.send(message)
        except DispatchFailure as exc:
            logger.warning(
                "notification.alert.recipient_failed",
                extra={"task_id": str(alert.task_id), "to": profile.email, "error": str(exc)},
            )
            continue
        sent += 1
    logger.info(
        "notification.alert.delivered",
        extra={"task_id": str(alert.task_id), "sent": sent, "recipients": len(recipients)},
    )
    return sent


async def process_notification_task(task: QueuedTask) -> None:
    """Decode and deliver a task notification."""
    await deliver_notification(decode_notification_task(task))


def requeue_notification_task(task: QueuedTask, *, delay_seconds: float = 0) -> bool:
    return requeue_notification(decode_notification_task(task), delay_seconds=delay_seconds)


async def process_alert_task(task: QueuedTask) -> None:
    """Decode and deliver an escalation alert."""
    await deliver_alert(decode_alert_task(task))


def requeue_alert_task(task: QueuedTask, *, delay_seconds: float = 0) -> bool:
    return requeue_alert(decode_alert_task(task), delay_seconds=delay_seconds)
