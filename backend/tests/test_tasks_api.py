# ruff: noqa: INP001
"""HTTP tests for task, timer, escalation and device endpoints."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any
from uuid import UUID, uuid4

import pytest
from fastapi import APIRouter, FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from app.api.deps import USER_ID_HEADER, get_dispatcher
from app.api.devices import router as devices_router
from app.api.escalations import router as escalations_router
from app.api.tasks import router as tasks_router
from app.core.error_handling import install_error_handling
from app.db.session import get_session, make_engine, make_session_maker
from app.models.profiles import Profile
from app.services import escalation_sweeper
from app.services.devices import register_device
from app.services.notifications import dispatch as notification_dispatch
from app.services.notifications.dispatcher import DispatchOutcome
from app.services.notifications.queue import EscalationAlert


class _RecordingDispatcher:
    def __init__(self) -> None:
        self.notified: list[tuple[UUID, str, dict[str, Any]]] = []
        self.alerts: list[EscalationAlert] = []

    async def notify(self, recipient_id: UUID, kind: str, payload: dict[str, Any]) -> DispatchOutcome:
        self.notified.append((recipient_id, kind, payload))
        return DispatchOutcome(ok=True, idempotency_key=f"{kind}:{recipient_id}")

    async def alert_managers(self, alert: EscalationAlert) -> DispatchOutcome:
        self.alerts.append(alert)
        return DispatchOutcome(ok=True, idempotency_key=alert.idempotency_key)


class _Env:
    def __init__(
        self,
        app: FastAPI,
        maker: async_sessionmaker[AsyncSession],
        dispatcher: _RecordingDispatcher,
    ) -> None:
        self.app = app
        self.maker = maker
        self.dispatcher = dispatcher
        self.staff = Profile(id=uuid4(), email="staff@example.com", role="staff")
        self.head = Profile(id=uuid4(), email="head@example.com", role="department_head")

    def client(self) -> AsyncClient:
        return AsyncClient(transport=ASGITransport(app=self.app), base_url="http://testserver")


def _build_test_app(
    session_maker: async_sessionmaker[AsyncSession],
    dispatcher: _RecordingDispatcher,
) -> FastAPI:
    app = FastAPI()
    api_v1 = APIRouter(prefix="/api/v1")
    api_v1.include_router(tasks_router)
    api_v1.include_router(escalations_router)
    api_v1.include_router(devices_router)
    app.include_router(api_v1)
    install_error_handling(app)

    async def _override_get_session() -> AsyncSession:
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_session] = _override_get_session
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    return app


@pytest.fixture
async def env(tmp_path: Path) -> _Env:
    engine = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'api.db'}")
    async with engine.connect() as conn, conn.begin():
        await conn.run_sync(SQLModel.metadata.create_all)
    maker = make_session_maker(engine)
    dispatcher = _RecordingDispatcher()
    result = _Env(_build_test_app(maker, dispatcher), maker, dispatcher)
    async with maker() as session:
        session.add_all([result.staff, result.head])
        await session.commit()
    return result


def _as(profile: Profile) -> dict[str, str]:
    return {USER_ID_HEADER: str(profile.id)}


async def _create(env: _Env, **overrides: Any) -> dict[str, Any]:
    body = {"title": "Quote for ACME", "assigned_to": str(env.staff.id), **overrides}
    async with env.client() as client:
        response = await client.post("/api/v1/tasks", json=body, headers=_as(env.head))
    assert response.status_code == 201, response.text
    return response.json()


@pytest.mark.asyncio
async def test_requests_without_caller_identity_are_rejected(env: _Env) -> None:
    async with env.client() as client:
        missing = await client.post("/api/v1/tasks", json={"title": "x"})
        malformed = await client.post(
            "/api/v1/tasks",
            json={"title": "x"},
            headers={USER_ID_HEADER: "not-a-uuid"},
        )
        unknown = await client.post(
            "/api/v1/tasks",
            json={"title": "x"},
            headers={USER_ID_HEADER: str(uuid4())},
        )

    assert missing.status_code == 401
    assert malformed.status_code == 401
    assert unknown.status_code == 401


@pytest.mark.asyncio
async def test_create_task_notifies_assignee(env: _Env) -> None:
    task = await _create(env, due_at="2099-01-01T00:00:00Z", priority="p1")

    assert task["status"] == "open"
    assert task["started_at"] is None
    assert task["priority"] == "p1"
    assert [(r, k) for r, k, _ in env.dispatcher.notified] == [(env.staff.id, "task_assigned")]


@pytest.mark.asyncio
async def test_create_task_rejects_blank_title(env: _Env) -> None:
    async with env.client() as client:
        response = await client.post(
            "/api/v1/tasks",
            json={"title": "   "},
            headers=_as(env.head),
        )

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_timer_lifecycle_over_http(env: _Env) -> None:
    task = await _create(env, due_at="2099-01-01T00:00:00Z")
    base = f"/api/v1/tasks/{task['id']}"

    async with env.client() as client:
        started = await client.post(f"{base}/start", headers=_as(env.staff))
        again = await client.post(f"{base}/start", headers=_as(env.staff))
        timer = await client.get(f"{base}/timer", headers=_as(env.staff))
        paused = await client.post(f"{base}/pause", headers=_as(env.staff))

    assert started.status_code == 200
    assert started.json()["started_at"] is not None
    assert again.status_code == 409
    assert again.json()["code"] == "invalid_transition"
    assert again.json()["retryable"] is False
    assert timer.status_code == 200
    assert timer.json()["state"] == "counting"
    assert timer.json()["is_running"] is True
    assert timer.json()["is_overdue"] is False
    assert paused.status_code == 200
    assert paused.json()["status"] == "pending"
    assert paused.json()["started_at"] is None


@pytest.mark.asyncio
async def test_pause_can_keep_task_open(env: _Env) -> None:
    task = await _create(env)
    base = f"/api/v1/tasks/{task['id']}"

    async with env.client() as client:
        await client.post(f"{base}/start", headers=_as(env.staff))
        paused = await client.post(f"{base}/pause?mark_pending=false", headers=_as(env.staff))

    assert paused.json()["status"] == "open"


@pytest.mark.asyncio
async def test_close_requires_approval_authority(env: _Env) -> None:
    task = await _create(env)
    base = f"/api/v1/tasks/{task['id']}"

    async with env.client() as client:
        denied = await client.post(f"{base}/close", headers=_as(env.staff))
        closed = await client.post(f"{base}/close", headers=_as(env.head))
        reclosed = await client.post(f"{base}/close", headers=_as(env.head))
        timer = await client.get(f"{base}/timer", headers=_as(env.staff))

    assert denied.status_code == 409
    assert "approval authority required" in denied.json()["detail"]
    assert closed.status_code == 200
    assert closed.json()["status"] == "closed"
    assert closed.json()["closed_approved_by"] == str(env.head.id)
    assert reclosed.status_code == 409
    assert timer.json()["state"] == "closed"
    assert timer.json()["is_overdue"] is False


@pytest.mark.asyncio
async def test_missing_task_is_404(env: _Env) -> None:
    missing = uuid4()
    async with env.client() as client:
        read = await client.get(f"/api/v1/tasks/{missing}", headers=_as(env.staff))
        start = await client.post(f"/api/v1/tasks/{missing}/start", headers=_as(env.staff))

    assert read.status_code == 404
    assert read.json()["code"] == "not_found"
    assert start.status_code == 404


@pytest.mark.asyncio
async def test_escalate_endpoint_claims_once(env: _Env) -> None:
    task = await _create(env, due_at="2025-01-01T00:00:00Z")
    url = f"/api/v1/tasks/{task['id']}/escalate"

    async with env.client() as client:
        first = await client.post(url, headers=_as(env.staff))
        second = await client.post(url, headers=_as(env.staff))
        read = await client.get(f"/api/v1/tasks/{task['id']}", headers=_as(env.staff))

    assert first.status_code == 200
    assert first.json()["status"] == "escalated"
    assert first.json()["escalated_to"] == str(env.head.id)
    assert first.json()["notified"] is True
    assert first.json()["alerted"] is True
    assert second.json()["status"] == "not_eligible"
    assert read.json()["escalated_to"] == str(env.head.id)
    assert len(env.dispatcher.alerts) == 1


@pytest.mark.asyncio
async def test_escalate_before_deadline_is_not_eligible(env: _Env) -> None:
    task = await _create(env, due_at="2099-01-01T00:00:00Z")

    async with env.client() as client:
        response = await client.post(
            f"/api/v1/tasks/{task['id']}/escalate",
            headers=_as(env.staff),
        )

    assert response.json()["status"] == "not_eligible"
    assert env.dispatcher.alerts == []


@pytest.mark.asyncio
async def test_sweep_endpoint_is_supervisor_only(
    env: _Env,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr(escalation_sweeper, "async_session_maker", env.maker)
    await _create(env, due_at="2025-01-01T00:00:00Z")
    await _create(env, due_at="2099-01-01T00:00:00Z")

    async with env.client() as client:
        forbidden = await client.post("/api/v1/escalations/sweep", headers=_as(env.staff))
        swept = await client.post("/api/v1/escalations/sweep", headers=_as(env.head))

    assert forbidden.status_code == 403
    assert swept.status_code == 200
    assert swept.json()["processed"] == 1
    assert swept.json()["escalated"] == 1
    assert swept.json()["failed"] == 0


@pytest.mark.asyncio
async def test_device_registration_is_an_upsert(
    env: _Env,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    body = {"expo_push_token": " ExponentPushToken[abc] "}

    async with env.client() as client:
        first = await client.post("/api/v1/devices", json=body, headers=_as(env.staff))
        second = await client.post("/api/v1/devices", json=body, headers=_as(env.staff))
        other = await client.post("/api/v1/devices", json=body, headers=_as(env.head))
        anonymous = await client.post("/api/v1/devices", json=body)

    assert first.status_code == 200
    assert first.json()["expo_push_token"] == "ExponentPushToken[abc]"
    assert first.json()["user_id"] == str(env.staff.id)
    assert second.json()["id"] == first.json()["id"]
    assert second.json()["last_seen_at"] >= first.json()["last_seen_at"]
    assert other.json()["id"] != first.json()["id"]
    assert anonymous.status_code == 401

    # Registered tokens are what push delivery targets.
    monkeypatch.setattr(notification_dispatch, "async_session_maker", env.maker)
    assert await notification_dispatch._device_tokens(env.staff.id) == ["ExponentPushToken[abc]"]


@pytest.mark.asyncio
async def test_register_device_bumps_last_seen_at(env: _Env) -> None:
    seen_first = datetime(2025, 1, 1, 9, 0, 0)
    seen_again = datetime(2025, 1, 2, 9, 0, 0)

    async with env.maker() as session:
        first = await register_device(
            session,
            user_id=env.staff.id,
            expo_push_token="tok-1",
            now=seen_first,
        )
        first_id = first.id
    async with env.maker() as session:
        again = await register_device(
            session,
            user_id=env.staff.id,
            expo_push_token="tok-1",
            now=seen_again,
        )

    assert again.id == first_id
    assert again.created_at == seen_first
    assert again.last_seen_at == seen_again
