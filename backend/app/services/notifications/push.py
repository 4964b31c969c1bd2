"""Expo push API client used by the notification worker."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import httpx

from app.core.config import settings
from app.core.exceptions import DispatchFailure
from app.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class PushMessage:
    """One Expo push message addressed to a single device token."""

    to: str
    title: str
    body: str
    data: dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        return {
            "to": self.to,
            "title": self.title,
            "body": self.body,
            "data": self.data,
            "sound": "default",
            "priority": "high",
        }


class ExpoPushClient:
    """Thin async wrapper around the Expo push send endpoint."""

    def __init__(
        self,
        *,
        api_url: str | None = None,
        timeout_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_url = api_url or settings.push_api_url
        self.timeout_seconds = timeout_seconds or settings.push_timeout_seconds
        self._transport = transport

    async def send(self, messages: list[PushMessage]) -> list[dict[str, Any]]:
        """Send messages in one request and return Expo's per-message tickets.

        Raises DispatchFailure on transport errors or a non-2xx response.
        """
        if not messages:
            return []
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_seconds,
                transport=self._transport,
            ) as client:
                response = await client.post(
                    self.api_url,
                    json=[message.to_payload() for message in messages],
                    headers={"Accept": "application/json"},
                )
        except httpx.HTTPError as exc:
            logger.warning(
                "push.send.transport_error",
                extra={"count": len(messages), "error": str(exc) or exc.__class__.__name__},
            )
            raise DispatchFailure(f"Push request failed: {exc}") from exc

        if response.status_code >= 300:
            logger.warning(
                "push.send.rejected",
                extra={"status_code": response.status_code, "body": response.text[:500]},
            )
            raise DispatchFailure(f"Push API returned HTTP {response.status_code}")

        try:
            body = response.json()
        except ValueError:
            # Accepted but unparseable; the messages were still handed to Expo.
            logger.warning(
                "push.send.unparseable_response",
                extra={"status_code": response.status_code, "body": response.text[:500]},
            )
            body = {}
        tickets: list[dict[str, Any]] = body.get("data", []) if isinstance(body, dict) else []
        errors = [ticket for ticket in tickets if ticket.get("status") == "error"]
        if errors:
            # Per-device errors (e.g. stale tokens) do not fail the whole delivery.
            logger.warning(
                "push.send.ticket_errors",
                extra={"count": len(errors), "messages": [t.get("message") for t in errors]},
            )
        logger.info("push.send.ok", extra={"count": len(messages)})
        return tickets
