"""Time helpers shared by models and services.

Timestamps are persisted as naive UTC datetimes.
"""

from __future__ import annotations

from datetime import UTC, datetime


def utcnow() -> datetime:
    """Return the current UTC time as a naive datetime."""
    return datetime.now(UTC).replace(tzinfo=None)


def as_naive_utc(value: datetime) -> datetime:
    """Normalize an aware datetime to naive UTC; naive values are assumed UTC."""
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def isoformat_utc(value: datetime | None) -> str | None:
    """Render a stored timestamp as an ISO-8601 string with an explicit UTC offset."""
    if value is None:
        return None
    return as_naive_utc(value).replace(tzinfo=UTC).isoformat()
