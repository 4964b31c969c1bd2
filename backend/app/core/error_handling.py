"""Request-id middleware and exception handlers producing structured error bodies."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any
from uuid import uuid4

from fastapi import status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError, ResponseValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.core.exceptions import InvalidTransition, StorageUnavailable, TaskNotFound
from app.core.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from fastapi import FastAPI
    from starlette.requests import Request
    from starlette.responses import Response

logger = get_logger(__name__)
REQUEST_ID_HEADER = "X-Request-Id"


def _get_request_id(request: Request) -> str | None:
    request_id = getattr(request.state, "request_id", None)
    if isinstance(request_id, str) and request_id:
        return request_id
    return None


def _error_payload(
    *,
    detail: Any,
    request_id: str | None,
    code: str | None = None,
    retryable: bool | None = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {"detail": detail}
    if request_id:
        payload["request_id"] = request_id
    if code is not None:
        payload["code"] = code
    if retryable is not None:
        payload["retryable"] = retryable
    return payload


def _json_response(
    request: Request,
    *,
    status_code: int,
    detail: Any,
    code: str | None = None,
    retryable: bool | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    request_id = _get_request_id(request)
    response_headers = dict(headers or {})
    if request_id:
        response_headers[REQUEST_ID_HEADER] = request_id
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(
            _error_payload(detail=detail, request_id=request_id, code=code, retryable=retryable),
        ),
        headers=response_headers,
    )


async def _request_id_middleware(
    request: Request,
    call_next: Callable[[Request], Awaitable[Response]],
) -> Response:
    incoming = request.headers.get(REQUEST_ID_HEADER, "").strip()
    request.state.request_id = incoming or uuid4().hex
    response = await call_next(request)
    response.headers[REQUEST_ID_HEADER] = request.state.request_id
    return response


def _sanitize_validation_errors(errors: Any) -> list[Any]:
    # Raw request bodies (bytes) in `input` are not JSON serializable.
    sanitized: list[Any] = []
    for error in errors:
        if isinstance(error, dict) and isinstance(error.get("input"), bytes):
            error = {**error, "input": error["input"].decode("utf-8", errors="replace")}
        sanitized.append(error)
    return sanitized


async def _request_validation_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    if not isinstance(exc, RequestValidationError):
        msg = "Expected RequestValidationError"
        raise TypeError(msg)
    return _json_response(
        request,
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail=_sanitize_validation_errors(exc.errors()),
    )


async def _response_validation_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    if not isinstance(exc, ResponseValidationError):
        msg = "Expected ResponseValidationError"
        raise TypeError(msg)
    logger.error(
        "http.response_validation_failed",
        extra={"path": request.url.path, "request_id": _get_request_id(request)},
    )
    return _json_response(
        request,
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Internal Server Error",
    )


async def _http_exception_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    if not isinstance(exc, StarletteHTTPException):
        msg = "Expected StarletteHTTPException"
        raise TypeError(msg)
    return _json_response(
        request,
        status_code=exc.status_code,
        detail=exc.detail,
        headers=exc.headers,
    )


async def _invalid_transition_handler(request: Request, exc: Exception) -> JSONResponse:
    if not isinstance(exc, InvalidTransition):
        msg = "Expected InvalidTransition"
        raise TypeError(msg)
    return _json_response(
        request,
        status_code=status.HTTP_409_CONFLICT,
        detail=str(exc),
        code="invalid_transition",
        retryable=False,
    )


async def _task_not_found_handler(request: Request, exc: Exception) -> JSONResponse:
    if not isinstance(exc, TaskNotFound):
        msg = "Expected TaskNotFound"
        raise TypeError(msg)
    return _json_response(
        request,
        status_code=status.HTTP_404_NOT_FOUND,
        detail=str(exc),
        code="not_found",
    )


async def _storage_unavailable_handler(request: Request, exc: Exception) -> JSONResponse:
    if not isinstance(exc, StorageUnavailable):
        msg = "Expected StorageUnavailable"
        raise TypeError(msg)
    logger.warning(
        "http.storage_unavailable",
        extra={"path": request.url.path, "request_id": _get_request_id(request), "error": str(exc)},
    )
    return _json_response(
        request,
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="Task store unavailable",
        code="storage_unavailable",
        retryable=True,
    )


async def _unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "http.unhandled_exception",
        extra={"path": request.url.path, "request_id": _get_request_id(request)},
        exc_info=exc,
    )
    return _json_response(
        request,
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Internal Server Error",
    )


def install_error_handling(app: FastAPI) -> None:
    """Attach request-id propagation and structured error handlers to the app."""
    app.middleware("http")(_request_id_middleware)
    app.add_exception_handler(RequestValidationError, _request_validation_exception_handler)
    app.add_exception_handler(ResponseValidationError, _response_validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, _http_exception_exception_handler)
    app.add_exception_handler(InvalidTransition, _invalid_transition_handler)
    app.add_exception_handler(TaskNotFound, _task_not_found_handler)
    app.add_exception_handler(StorageUnavailable, _storage_unavailable_handler)
    app.add_exception_handler(Exception, _unhandled_exception_handler)
