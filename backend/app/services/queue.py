"""Redis-backed queue helpers for RQ worker workloads.

Envelopes live in a Redis list; delayed retries wait in a companion sorted set
scored by their due time and are moved onto the list as they become ready.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, cast

import redis

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)

_SCHEDULED_SUFFIX = ":scheduled"
_DEDUPE_PREFIX = "dedupe:"
_DRAIN_BATCH_SIZE = 100


@dataclass(frozen=True)
class QueuedTask:
    """Generic queued task envelope."""

    task_type: str
    payload: dict[str, Any]
    created_at: datetime
    attempts: int = 0

    def to_json(self) -> str:
        return json.dumps(
            {
                "task_type": self.task_type,
                "payload": self.payload,
                "created_at": self.created_at.isoformat(),
                "attempts": self.attempts,
            },
            sort_keys=True,
        )


def _redis_client(redis_url: str | None = None) -> redis.Redis:
    return redis.Redis.from_url(
        redis_url or settings.rq_redis_url,
        socket_timeout=settings.notification_dispatch_timeout_seconds,
        socket_connect_timeout=settings.notification_dispatch_timeout_seconds,
    )


def _scheduled_queue_name(queue_name: str) -> str:
    return f"{queue_name}{_SCHEDULED_SUFFIX}"


def _now_seconds() -> float:
    return time.time()


def _drain_ready_scheduled_tasks(client: redis.Redis, queue_name: str) -> float | None:
    """Move due delayed tasks onto the list; return seconds until the next one."""
    scheduled_queue = _scheduled_queue_name(queue_name)
    now = _now_seconds()

    ready_items = cast(
        list[str | bytes],
        client.zrangebyscore(scheduled_queue, "-inf", now, start=0, num=_DRAIN_BATCH_SIZE),
    )
    if ready_items:
        client.lpush(queue_name, *ready_items)
        client.zrem(scheduled_queue, *ready_items)
        logger.debug(
            "queue.drain_ready_scheduled",
            extra={"queue_name": queue_name, "count": len(ready_items)},
        )

    next_item = cast(
        list[tuple[str | bytes, float]],
        client.zrangebyscore(scheduled_queue, now, "+inf", start=0, num=1, withscores=True),
    )
    if not next_item:
        return None
    return max(0.0, float(next_item[0][1]) - now)


def enqueue_task(
    task: QueuedTask,
    queue_name: str,
    *,
    redis_url: str | None = None,
) -> bool:
    """Push a task envelope onto a Redis list-backed queue.

    Raises on Redis errors so callers can decide whether failure is fatal.
    """
    client = _redis_client(redis_url=redis_url)
    client.lpush(queue_name, task.to_json())
    logger.info(
        "queue.enqueued",
        extra={"task_type": task.task_type, "queue_name": queue_name, "attempt": task.attempts},
    )
    return True


def enqueue_task_with_delay(
    task: QueuedTask,
    queue_name: str,
    *,
    delay_seconds: float,
    redis_url: str | None = None,
) -> bool:
    """Enqueue a task immediately or park it in the scheduled set until due."""
    delay = max(0.0, float(delay_seconds))
    if delay == 0:
        return enqueue_task(task, queue_name, redis_url=redis_url)
    client = _redis_client(redis_url=redis_url)
    client.zadd(_scheduled_queue_name(queue_name), {task.to_json(): _now_seconds() + delay})
    logger.info(
        "queue.scheduled",
        extra={"task_type": task.task_type, "queue_name": queue_name, "delay_seconds": delay},
    )
    return True


def dequeue_task(
    queue_name: str,
    *,
    redis_url: str | None = None,
    block: bool = False,
    block_timeout: float = 0,
) -> QueuedTask | None:
    """Pop one task envelope from the queue."""
    client = _redis_client(redis_url=redis_url)
    next_delay = _drain_ready_scheduled_tasks(client, queue_name)
    raw: str | bytes | None
    if block:
        timeout = max(0.0, float(block_timeout))
        if next_delay is not None:
            timeout = min(timeout, next_delay) if timeout else next_delay
        raw_result = cast(
            tuple[bytes | str, bytes | str] | None,
            client.brpop([queue_name], timeout=timeout),
        )
        raw = raw_result[1] if raw_result is not None else None
    else:
        raw = cast(str | bytes | None, client.rpop(queue_name))
    if raw is None:
        return None
    return _decode_task(raw, queue_name)


def _decode_task(raw: str | bytes, queue_name: str) -> QueuedTask:
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    try:
        payload: dict[str, Any] = json.loads(raw)
        return QueuedTask(
            task_type=str(payload["task_type"]),
            payload=payload["payload"],
            created_at=datetime.fromisoformat(payload["created_at"]),
            attempts=int(payload.get("attempts", 0)),
        )
    except (ValueError, KeyError, TypeError) as exc:
        logger.error(
            "queue.decode_failed",
            extra={"queue_name": queue_name, "raw_payload": raw, "error": str(exc)},
        )
        raise


def requeue_if_failed(
    task: QueuedTask,
    queue_name: str,
    *,
    max_retries: int,
    redis_url: str | None = None,
    delay_seconds: float = 0,
) -> bool:
    """Requeue a failed task with capped retries.

    Returns True if requeued.
    """
    requeued = QueuedTask(
        task_type=task.task_type,
        payload=task.payload,
        created_at=task.created_at,
        attempts=task.attempts + 1,
    )
    if requeued.attempts > max_retries:
        logger.warning(
            "queue.drop_failed_task",
            extra={
                "task_type": task.task_type,
                "queue_name": queue_name,
                "attempts": requeued.attempts,
            },
        )
        return False
    return enqueue_task_with_delay(
        requeued,
        queue_name,
        delay_seconds=delay_seconds,
        redis_url=redis_url,
    )


def claim_once(key: str, *, ttl_seconds: int, redis_url: str | None = None) -> bool:
    """Atomically mark `key` as handled; False when another delivery already claimed it."""
    client = _redis_client(redis_url=redis_url)
    return bool(client.set(f"{_DEDUPE_PREFIX}{key}", "1", nx=True, ex=ttl_seconds))


def release_claim(key: str, *, redis_url: str | None = None) -> None:
    """Drop a dedupe marker so a failed delivery can be retried."""
    client = _redis_client(redis_url=redis_url)
    client.delete(f"{_DEDUPE_PREFIX}{key}")
