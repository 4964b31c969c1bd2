# ruff: noqa: INP001
"""Notification envelopes, dispatcher, templates and worker-side delivery."""

from __future__ import annotations

import asyncio
import json
from typing import Any
from uuid import UUID, uuid4

import httpx
import pytest

from app.core.exceptions import DispatchFailure
from app.models.profiles import Profile
from app.services.notifications import dispatch as dispatch_module
from app.services.notifications import dispatcher as dispatcher_module
from app.services.notifications.dispatch import deliver_alert, deliver_notification, render_push
from app.services.notifications.dispatcher import (
    QueuedNotificationDispatcher,
    alert_key,
    notification_key,
)
from app.services.notifications.email import MailClient, MailMessage, build_escalation_message
from app.services.notifications.push import ExpoPushClient, PushMessage
from app.services.notifications.queue import (
    ESCALATION_ALERT_TASK_TYPE,
    NOTIFICATION_TASK_TYPE,
    EscalationAlert,
    TaskNotification,
    decode_alert_task,
    decode_notification_task,
)
from app.services.queue import QueuedTask

TASK_ID = UUID("00000000-0000-0000-0000-00000000000a")
RECIPIENT_ID = UUID("00000000-0000-0000-0000-00000000000b")


def _notification(kind: str = "task_assigned", **payload: Any) -> TaskNotification:
    body = {"task_id": str(TASK_ID), "title": "Call back client", **payload}
    return TaskNotification(
        kind=kind,  # type: ignore[arg-type]
        recipient_id=RECIPIENT_ID,
        task_id=TASK_ID,
        idempotency_key=notification_key(RECIPIENT_ID, kind, body),
        payload=body,
    )


def _alert() -> EscalationAlert:
    return EscalationAlert(
        task_id=TASK_ID,
        task_title="Call back client",
        deadline_at="2025-01-01T10:00:00+00:00",
        idempotency_key=alert_key(TASK_ID, "2025-01-01T10:05:00+00:00"),
    )


class _Claims:
    def __init__(self) -> None:
        self.held: set[str] = set()
        self.released: list[str] = []

    def claim_once(self, key: str, *, ttl_seconds: int) -> bool:
        del ttl_seconds
        if key in self.held:
            return False
        self.held.add(key)
        return True

    def release_claim(self, key: str) -> None:
        self.held.discard(key)
        self.released.append(key)


@pytest.fixture
def claims(monkeypatch: pytest.MonkeyPatch) -> _Claims:
    fake = _Claims()
    monkeypatch.setattr(dispatch_module, "claim_once", fake.claim_once)
    monkeypatch.setattr(dispatch_module, "release_claim", fake.release_claim)
    return fake


def test_idempotency_keys_distinguish_event_instances() -> None:
    first = notification_key(
        RECIPIENT_ID,
        "status_change",
        {"task_id": str(TASK_ID), "status": "open", "updated_at": "t1"},
    )
    second = notification_key(
        RECIPIENT_ID,
        "status_change",
        {"task_id": str(TASK_ID), "status": "open", "updated_at": "t2"},
    )

    assert first == f"status_change:{TASK_ID}:{RECIPIENT_ID}:open@t1"
    assert first != second
    assert alert_key(TASK_ID, "e1") == f"escalation_alert:{TASK_ID}:-:e1"


def test_queue_envelopes_decode_back() -> None:
    notification = _notification("escalation", escalated_at="2025-01-01T10:05:00+00:00")
    task = QueuedTask(
        task_type=NOTIFICATION_TASK_TYPE,
        payload={
            "kind": "escalation",
            "recipient_id": str(RECIPIENT_ID),
            "task_id": str(TASK_ID),
            "idempotency_key": notification.idempotency_key,
            "payload": notification.payload,
        },
        created_at=notification.created_at,
        attempts=2,
    )

    decoded = decode_notification_task(task)

    assert decoded.kind == "escalation"
    assert decoded.recipient_id == RECIPIENT_ID
    assert decoded.attempts == 2
    with pytest.raises(ValueError, match="Unexpected task_type"):
        decode_alert_task(task)


def test_decode_rejects_unknown_kind() -> None:
    task = QueuedTask(
        task_type=NOTIFICATION_TASK_TYPE,
        payload={
            "kind": "digest",
            "recipient_id": str(RECIPIENT_ID),
            "task_id": str(TASK_ID),
            "idempotency_key": "k",
        },
        created_at=_alert().created_at,
    )

    with pytest.raises(ValueError, match="Unknown notification kind"):
        decode_notification_task(task)


@pytest.mark.asyncio
async def test_queued_dispatcher_enqueues_envelopes(monkeypatch: pytest.MonkeyPatch) -> None:
    enqueued: list[Any] = []
    monkeypatch.setattr(dispatcher_module, "enqueue_notification", enqueued.append)
    monkeypatch.setattr(dispatcher_module, "enqueue_alert", enqueued.append)
    dispatcher = QueuedNotificationDispatcher(timeout_seconds=1)

    outcome = await dispatcher.notify(
        RECIPIENT_ID,
        "task_assigned",
        {"task_id": str(TASK_ID), "title": "Call back client", "created_at": "c1"},
    )
    alert_outcome = await dispatcher.alert_managers(_alert())

    assert outcome.ok is True
    assert outcome.idempotency_key == f"task_assigned:{TASK_ID}:{RECIPIENT_ID}:c1"
    assert alert_outcome.ok is True
    assert isinstance(enqueued[0], TaskNotification)
    assert isinstance(enqueued[1], EscalationAlert)


@pytest.mark.asyncio
async def test_queued_dispatcher_reports_failures_without_raising(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def _boom(_: object) -> bool:
        raise ConnectionError("redis unreachable")

    monkeypatch.setattr(dispatcher_module, "enqueue_alert", _boom)

    outcome = await QueuedNotificationDispatcher(timeout_seconds=1).alert_managers(_alert())

    assert outcome.ok is False
    assert outcome.error == "redis unreachable"


@pytest.mark.asyncio
async def test_queued_dispatcher_times_out(monkeypatch: pytest.MonkeyPatch) -> None:
    async def _never(*_: object, **__: object) -> None:
        await asyncio.sleep(10)

    monkeypatch.setattr(dispatcher_module.asyncio, "to_thread", _never)

    outcome = await QueuedNotificationDispatcher(timeout_seconds=0.01).notify(
        RECIPIENT_ID,
        "escalation",
        {"task_id": str(TASK_ID), "escalated_at": "e1"},
    )

    assert outcome.ok is False
    assert outcome.error is not None and "timed out" in outcome.error


@pytest.mark.asyncio
async def test_queued_dispatcher_rejects_unknown_kind() -> None:
    with pytest.raises(ValueError):
        await QueuedNotificationDispatcher().notify(
            RECIPIENT_ID,
            "digest",  # type: ignore[arg-type]
            {"task_id": str(TASK_ID)},
        )


@pytest.mark.parametrize(
    ("kind", "payload", "expected"),
    [
        (
            "task_assigned",
            {},
            ("New task assigned", "You have been assigned task: Call back client"),
        ),
        (
            "escalation",
            {},
            ("Task escalated", '"Call back client" is overdue and was escalated to you'),
        ),
        ("status_change", {"status": "closed"}, ("x Task closed", 'Task "Call back client" was closed')),
        ("status_change", {"status": "open"}, ("> Task opened", '"Call back client" is now open')),
        (
            "status_change",
            {"status": "pending"},
            ("|| Task pending", '"Call back client" is now pending'),
        ),
        ("status_change", {"status": "archived"}, None),
    ],
)
def test_render_push_templates(
    kind: str,
    payload: dict[str, Any],
    expected: tuple[str, str] | None,
) -> None:
    assert render_push(_notification(kind, **payload)) == expected


@pytest.mark.asyncio
async def test_push_client_posts_expo_messages() -> None:
    seen: list[Any] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        return httpx.Response(200, json={"data": [{"status": "ok", "id": "ticket-1"}]})

    client = ExpoPushClient(
        api_url="https://push.test/send",
        transport=httpx.MockTransport(_handler),
    )

    tickets = await client.send(
        [PushMessage(to="ExponentPushToken[a]", title="t", body="b", data={"task_id": "x"})],
    )

    assert tickets == [{"status": "ok", "id": "ticket-1"}]
    assert seen == [
        [
            {
                "to": "ExponentPushToken[a]",
                "title": "t",
                "body": "b",
                "data": {"task_id": "x"},
                "sound": "default",
                "priority": "high",
            },
        ],
    ]


@pytest.mark.asyncio
async def test_push_client_raises_on_rejection() -> None:
    client = ExpoPushClient(
        api_url="https://push.test/send",
        transport=httpx.MockTransport(lambda _: httpx.Response(503, text="busy")),
    )

    with pytest.raises(DispatchFailure, match="HTTP 503"):
        await client.send([PushMessage(to="tok", title="t", body="b")])


@pytest.mark.asyncio
async def test_deliver_notification_sends_once_per_key(
    claims: _Claims,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    requests: list[Any] = []

    async def _tokens(_: object) -> list[str]:
        return ["tok-1", "tok-2"]

    def _handler(request: httpx.Request) -> httpx.Response:
        requests.append(json.loads(request.content))
        return httpx.Response(200, json={"data": []})

    monkeypatch.setattr(dispatch_module, "_device_tokens", _tokens)
    client = ExpoPushClient(api_url="https://push.test", transport=httpx.MockTransport(_handler))
    notification = _notification("escalation", escalated_at="e1")

    assert await deliver_notification(notification, client=client) is True
    assert await deliver_notification(notification, client=client) is False

    assert len(requests) == 1
    assert [message["to"] for message in requests[0]] == ["tok-1", "tok-2"]
    assert requests[0][0]["data"] == {"task_id": str(TASK_ID), "kind": "escalation"}


@pytest.mark.asyncio
async def test_deliver_notification_releases_key_on_failure(
    claims: _Claims,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    async def _tokens(_: object) -> list[str]:
        return ["tok-1"]

    monkeypatch.setattr(dispatch_module, "_device_tokens", _tokens)
    client = ExpoPushClient(
        api_url="https://push.test",
        transport=httpx.MockTransport(lambda _: httpx.Response(500)),
    )
    notification = _notification()

    with pytest.raises(DispatchFailure):
        await deliver_notification(notification, client=client)

    assert claims.released == [notification.idempotency_key]
    assert claims.held == set()


@pytest.mark.asyncio
async def test_deliver_notification_without_devices_is_a_no_op(
    claims: _Claims,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    async def _tokens(_: object) -> list[str]:
        return []

    def _unexpected(_: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    monkeypatch.setattr(dispatch_module, "_device_tokens", _tokens)
    client = ExpoPushClient(api_url="https://push.test", transport=httpx.MockTransport(_unexpected))

    assert await deliver_notification(_notification(), client=client) is True


def test_escalation_mail_templates() -> None:
    message = build_escalation_message(
        recipient_email="head@example.com",
        recipient_name="Head",
        task_id=str(TASK_ID),
        task_title="Call back client",
        deadline_at=None,
    )

    assert message.subject == '[Action Required] Overdue Task: "Call back client"'
    assert message.text.splitlines() == [
        "[OVERDUE TASK]",
        "Task: Call back client",
        "Due: N/A",
        f"ID: {TASK_ID}",
        "",
        "Please review in Sales Task Tracker.",
    ]
    assert "<strong>Due:</strong> N/A" in message.html


@pytest.mark.asyncio
async def test_mail_client_posts_bearer_json() -> None:
    seen: list[httpx.Request] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"id": "m1"})

    client = MailClient(
        api_url="https://mail.test/emails",
        api_key="secret",
        sender="alerts@example.com",
        transport=httpx.MockTransport(_handler),
    )

    await client.send(MailMessage(to="head@example.com", subject="s", text="t", html="h"))

    assert seen[0].headers["Authorization"] == "Bearer secret"
    assert json.loads(seen[0].content) == {
        "from": "alerts@example.com",
        "to": ["head@example.com"],
        "subject": "s",
        "text": "t",
        "html": "h",
    }


@pytest.mark.asyncio
async def test_deliver_alert_skips_when_mail_unconfigured(claims: _Claims) -> None:
    client = MailClient(api_url="", sender="")

    assert await deliver_alert(_alert(), client=client) == 0
    assert claims.held == set()


@pytest.mark.asyncio
async def test_deliver_alert_continues_past_failed_recipient(
    claims: _Claims,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    recipients = [
        Profile(id=uuid4(), email="a@example.com", role="admin", full_name="Ada"),
        Profile(id=uuid4(), email="bad@example.com", role="supervisor"),
        Profile(id=uuid4(), email="c@example.com", role="department_head"),
    ]
    delivered: list[str] = []

    async def _recipients() -> list[Profile]:
        return recipients

    def _handler(request: httpx.Request) -> httpx.Response:
        to = json.loads(request.content)["to"][0]
        if to == "bad@example.com":
            return httpx.Response(422, json={"error": "bad address"})
        delivered.append(to)
        return httpx.Response(200, json={})

    monkeypatch.setattr(dispatch_module, "_alert_recipients", _recipients)
    client = MailClient(
        api_url="https://mail.test",
        sender="alerts@example.com",
        transport=httpx.MockTransport(_handler),
    )

    assert await deliver_alert(_alert(), client=client) == 2
    assert delivered == ["a@example.com", "c@example.com"]
    # A repeat delivery of the same alert is suppressed.
    assert await deliver_alert(_alert(), client=client) == 0


@pytest.mark.asyncio
async def test_process_alert_task_decodes_and_delivers(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    seen: list[EscalationAlert] = []

    async def _deliver(alert: EscalationAlert, **_: object) -> int:
        seen.append(alert)
        return 1

    monkeypatch.setattr(dispatch_module, "deliver_alert", _deliver)
    alert = _alert()
    task = QueuedTask(
        task_type=ESCALATION_ALERT_TASK_TYPE,
        payload={
            "task_id": str(alert.task_id),
            "task_title": alert.task_title,
            "deadline_at": alert.deadline_at,
            "idempotency_key": alert.idempotency_key,
        },
        created_at=alert.created_at,
    )

    await dispatch_module.process_alert_task(task)

    assert seen == [alert]


@pytest.mark.asyncio
async def test_deliver_alert_retries_after_recipient_lookup_failure(
    claims: _Claims,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    lookups = {"count": 0}
    delivered: list[str] = []

    async def _recipients() -> list[Profile]:
        lookups["count"] += 1
        if lookups["count"] == 1:
            raise RuntimeError("db down")
        return [Profile(id=uuid4(), email="head@example.com", role="department_head")]

    def _handler(request: httpx.Request) -> httpx.Response:
        delivered.append(json.loads(request.content)["to"][0])
        return httpx.Response(200, json={})

    monkeypatch.setattr(dispatch_module, "_alert_recipients", _recipients)
    client = MailClient(
        api_url="https://mail.test",
        sender="alerts@example.com",
        transport=httpx.MockTransport(_handler),
    )
    alert = _alert()

    with pytest.raises(RuntimeError):
        await deliver_alert(alert, client=client)

    assert claims.released == [alert.idempotency_key]
    assert claims.held == set()
    assert await deliver_alert(alert, client=client) == 1
    assert delivered == ["head@example.com"]


@pytest.mark.asyncio
async def test_push_client_accepts_non_json_success_body() -> None:
    client = ExpoPushClient(
        api_url="https://push.test/send",
        transport=httpx.MockTransport(lambda _: httpx.Response(200, text="ok")),
    )

    tickets = await client.send([PushMessage(to="tok", title="t", body="b")])

    assert tickets == []
