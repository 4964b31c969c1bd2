# ruff: noqa: INP001
"""Generic RQ queue helper tests."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

import pytest

from app.services import queue as queue_module
from app.services.queue import (
    QueuedTask,
    claim_once,
    dequeue_task,
    enqueue_task,
    enqueue_task_with_delay,
    release_claim,
    requeue_if_failed,
)


class _FakeRedis:
    def __init__(self) -> None:
        self.values: list[str] = []
        self.scheduled: dict[str, float] = {}
        self.keys: dict[str, Any] = {}

    def lpush(self, key: str, *values: str) -> None:
        del key
        for value in values:
            self.values.insert(0, value)

    def rpop(self, key: str) -> str | None:
        del key
        if not self.values:
            return None
        return self.values.pop()

    def zadd(self, key: str, mapping: dict[str, float]) -> None:
        del key
        self.scheduled.update(mapping)

    def zrangebyscore(
        self,
        key: str,
        low: Any,
        high: Any,
        *,
        start: int = 0,
        num: int | None = None,
        withscores: bool = False,
    ) -> list[Any]:
        del key
        lo = float("-inf") if low == "-inf" else float(low)
        hi = float("inf") if high == "+inf" else float(high)
        items = sorted(
            ((member, score) for member, score in self.scheduled.items() if lo <= score <= hi),
            key=lambda item: item[1],
        )[start : None if num is None else start + num]
        return items if withscores else [member for member, _ in items]

    def zrem(self, key: str, *members: str) -> None:
        del key
        for member in members:
            self.scheduled.pop(member, None)

    def set(self, key: str, value: str, *, nx: bool = False, ex: int | None = None) -> bool | None:
        del ex
        if nx and key in self.keys:
            return None
        self.keys[key] = value
        return True

    def delete(self, key: str) -> None:
        self.keys.pop(key, None)


@pytest.fixture
def fake_redis(monkeypatch: pytest.MonkeyPatch) -> _FakeRedis:
    fake = _FakeRedis()

    def _fake_redis(*, redis_url: str | None = None) -> _FakeRedis:
        return fake

    monkeypatch.setattr("app.services.queue._redis_client", _fake_redis)
    return fake


@pytest.mark.parametrize("attempts", [0, 1, 2])
def test_generic_queue_roundtrip(fake_redis: _FakeRedis, attempts: int) -> None:
    payload = QueuedTask(
        task_type="task_notification",
        payload={"kind": "status_change"},
        created_at=datetime.now(UTC),
        attempts=attempts,
    )

    assert enqueue_task(payload, "task-notifications")
    item = dequeue_task("task-notifications")
    assert item is not None
    assert item.task_type == payload.task_type
    assert item.payload == payload.payload
    assert item.attempts == attempts


def test_dequeue_is_fifo(fake_redis: _FakeRedis) -> None:
    for name in ("first", "second"):
        enqueue_task(
            QueuedTask(task_type=name, payload={}, created_at=datetime.now(UTC)),
            "task-notifications",
        )

    first = dequeue_task("task-notifications")
    second = dequeue_task("task-notifications")

    assert first is not None and first.task_type == "first"
    assert second is not None and second.task_type == "second"
    assert dequeue_task("task-notifications") is None


@pytest.mark.parametrize("attempts", [0, 1, 2, 3])
def test_generic_requeue_respects_retry_cap(fake_redis: _FakeRedis, attempts: int) -> None:
    payload = QueuedTask(
        task_type="escalation_alert",
        payload={"attempt": attempts},
        created_at=datetime.now(UTC),
        attempts=attempts,
    )

    if attempts >= 3:
        assert requeue_if_failed(payload, "task-notifications", max_retries=3) is False
        assert fake_redis.values == []
    else:
        assert requeue_if_failed(payload, "task-notifications", max_retries=3) is True
        requeued = dequeue_task("task-notifications")
        assert requeued is not None
        assert requeued.attempts == attempts + 1


def test_delayed_task_waits_until_due(
    fake_redis: _FakeRedis,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    clock = {"now": 1000.0}
    monkeypatch.setattr(queue_module, "_now_seconds", lambda: clock["now"])
    task = QueuedTask(task_type="task_notification", payload={}, created_at=datetime.now(UTC))

    enqueue_task_with_delay(task, "task-notifications", delay_seconds=30)

    assert dequeue_task("task-notifications") is None
    clock["now"] = 1031.0
    ready = dequeue_task("task-notifications")
    assert ready is not None
    assert ready.task_type == "task_notification"
    assert fake_redis.scheduled == {}


def test_malformed_payload_raises(fake_redis: _FakeRedis) -> None:
    fake_redis.values.append('{"payload": {}}')

    with pytest.raises(KeyError):
        dequeue_task("task-notifications")


def test_claim_once_is_exclusive_until_released(fake_redis: _FakeRedis) -> None:
    assert claim_once("escalation:t:r:1", ttl_seconds=60) is True
    assert claim_once("escalation:t:r:1", ttl_seconds=60) is False

    release_claim("escalation:t:r:1")

    assert claim_once("escalation:t:r:1", ttl_seconds=60) is True
