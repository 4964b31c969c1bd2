"""Task notification dispatch: queue envelopes, dispatcher contract, and delivery."""

from app.services.notifications.dispatcher import (
    DispatchOutcome,
    NotificationDispatcher,
    QueuedNotificationDispatcher,
)
from app.services.notifications.queue import EscalationAlert, TaskNotification

__all__ = [
    "DispatchOutcome",
    "EscalationAlert",
    "NotificationDispatcher",
    "QueuedNotificationDispatcher",
    "TaskNotification",
]
