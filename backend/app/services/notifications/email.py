"""Escalation alert mail: templates and the HTTP mail API client."""

from __future__ import annotations

from dataclasses import dataclass
from html import escape

import httpx

from app.core.config import settings
from app.core.exceptions import DispatchFailure
from app.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class MailMessage:
    to: str
    subject: str
    text: str
    html: str


def escalation_subject(task_title: str) -> str:
    return f'[Action Required] Overdue Task: "{task_title}"'


def escalation_text(*, task_id: str, task_title: str, due: str) -> str:
    return "\n".join(
        [
            "[OVERDUE TASK]",
            f"Task: {task_title}",
            f"Due: {due}",
            f"ID: {task_id}",
            "",
            f"Please review in {settings.app_name}.",
        ],
    )


def escalation_html(*, recipient_name: str, task_id: str, task_title: str, due: str) -> str:
    return (
        "<h2>A task has exceeded its SLA</h2>"
        f"<p>Hi {escape(recipient_name)}, a staff task has passed its deadline "
        "and has been escalated.</p>"
        "<ul>"
        f"<li><strong>Task:</strong> {escape(task_title)}</li>"
        f"<li><strong>Due:</strong> {escape(due)}</li>"
        f"<li><strong>ID:</strong> {escape(task_id)}</li>"
        "</ul>"
        f"<p>Please review in {escape(settings.app_name)}.</p>"
    )


def build_escalation_message(
    *,
    recipient_email: str,
    recipient_name: str,
    task_id: str,
    task_title: str,
    deadline_at: str | None,
) -> MailMessage:
    due = deadline_at or "N/A"
    return MailMessage(
        to=recipient_email,
        subject=escalation_subject(task_title),
        text=escalation_text(task_id=task_id, task_title=task_title, due=due),
        html=escalation_html(
            recipient_name=recipient_name,
            task_id=task_id,
            task_title=task_title,
            due=due,
        ),
    )


class MailClient:
    """Bearer-authenticated JSON mail API client."""

    def __init__(
        self,
        *,
        api_url: str | None = None,
        api_key: str | None = None,
        sender: str | None = None,
        timeout_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_url = api_url if api_url is not None else settings.mail_api_url
        self.api_key = api_key if api_key is not None else settings.mail_api_key
        self.sender = sender if sender is not None else settings.mail_sender
        self.timeout_seconds = timeout_seconds or settings.mail_timeout_seconds
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.api_url.strip() and self.sender.strip())

    async def send(self, message: MailMessage) -> None:
        if not self.configured:
            raise DispatchFailure("Mail API is not configured")
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_seconds,
                transport=self._transport,
            ) as client:
                response = await client.post(
                    self.api_url,
                    json={
                        "from": self.sender,
                        "to": [message.to],
                        "subject": message.subject,
                        "text": message.text,
                        "html": message.html,
                    },
                    headers=headers,
                )
        except httpx.HTTPError as exc:
            logger.warning(
                "mail.send.transport_error",
                extra={"to": message.to, "error": str(exc) or exc.__class__.__name__},
            )
            raise DispatchFailure(f"Mail request failed: {exc}") from exc

        if response.status_code >= 300:
            logger.warning(
                "mail.send.rejected",
                extra={
                    "to": message.to,
                    "status_code": response.status_code,
                    "body": response.text[:500],
                },
            )
            raise DispatchFailure(f"Mail API returned HTTP {response.status_code}")
        logger.info("mail.send.ok", extra={"to": message.to})
