"""Standard success/error envelope for the weekly questions endpoints."""

from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import Request
from fastapi.responses import JSONResponse

from .errors import WeeklyQuestionsError


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def _drop_none(payload: dict) -> dict:
    return {k: v for k, v in payload.items() if v is not None}


def success_body(data: Any, pagination: Optional[dict] = None, correlation_id: Optional[str] = None, duration_ms: float = 0.0) -> dict:
    body = {
        "success": True,
        "data": data,
        "metadata": _drop_none({
            "timestamp": _timestamp(),
            "duration": duration_ms,
            "correlationId": correlation_id,
        }),
    }
    if pagination is not None:
        body["pagination"] = _drop_none(pagination)
    return body


def error_body(code: str, message: str, details: Any = None, correlation_id: Optional[str] = None, request_id: Optional[str] = None) -> dict:
    body = {
        "success": False,
        "error": message,
        "code": code,
        "metadata": _drop_none({
            "timestamp": _timestamp(),
            "correlationId": correlation_id,
            "requestId": request_id,
        }),
    }
    if details is not None:
        body["details"] = details
    return body


def success_response(request: Request, data: Any, duration_ms: float, pagination: Optional[dict] = None) -> JSONResponse:
    correlation_id = getattr(request.state, "correlation_id", None)
    return JSONResponse(status_code=200, content=success_body(data, pagination, correlation_id, duration_ms))


def error_response(request: Request, exc: WeeklyQuestionsError) -> JSONResponse:
    correlation_id = getattr(request.state, "correlation_id", None)
    request_id = getattr(request.state, "request_id", None)
    headers = {}
    retry_after = getattr(exc, "retry_after", None)
    if retry_after:
        headers["Retry-After"] = str(retry_after)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.code.value, exc.message, exc.details, correlation_id, request_id),
        headers=headers,
    )
