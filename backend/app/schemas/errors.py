"""Structured error payload schemas used by API responses."""

from __future__ import annotations

from pydantic import Field
from sqlmodel import SQLModel


class ErrorResponse(SQLModel):
    """Standard error payload returned by every handler in `install_error_handling`."""

    detail: str | dict[str, object] | list[object] = Field(
        description="Human-readable message, or validation issues for 422 responses.",
        examples=["Cannot start task: task is closed"],
    )
    request_id: str | None = Field(
        default=None,
        description="Request correlation identifier injected by middleware.",
    )
    code: str | None = Field(
        default=None,
        description="Optional machine-readable error code.",
        examples=["invalid_transition", "not_found", "storage_unavailable"],
    )
    retryable: bool | None = Field(
        default=None,
        description="Whether the call may succeed if retried unchanged.",
    )
