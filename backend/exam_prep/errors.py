"""Error codes and domain exceptions for the weekly questions engine.

Every error raised by the progression engine carries a stable `code` from
`ErrorCode` and the HTTP status it maps to. Handlers never build
`HTTPException`s for domain failures; they let these propagate to the
response envelope in `responses.py`.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional


class ErrorCode(str, Enum):
    """Closed set of semantic error codes shared by the API layer."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_INPUT = "INVALID_INPUT"
    MISSING_REQUIRED_FIELD = "MISSING_REQUIRED_FIELD"

    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    INVALID_TOKEN = "INVALID_TOKEN"

    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
    WEEK_NOT_FOUND = "WEEK_NOT_FOUND"
    CONCURSO_NOT_FOUND = "CONCURSO_NOT_FOUND"
    USER_NOT_FOUND = "USER_NOT_FOUND"

    INVALID_WEEK_ORDER = "INVALID_WEEK_ORDER"
    WEEK_ALREADY_COMPLETED = "WEEK_ALREADY_COMPLETED"
    WEEK_NOT_AVAILABLE = "WEEK_NOT_AVAILABLE"

    CONCURRENT_MODIFICATION = "CONCURRENT_MODIFICATION"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"

    INTERNAL_ERROR = "INTERNAL_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    DATABASE_ERROR = "DATABASE_ERROR"

    CONCURSO_REQUIRED = "CONCURSO_REQUIRED"
    INVALID_CONFIGURATION = "INVALID_CONFIGURATION"


HTTP_STATUS_BY_CODE = {
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.INVALID_INPUT: 400,
    ErrorCode.MISSING_REQUIRED_FIELD: 400,
    ErrorCode.UNAUTHORIZED: 401,
    ErrorCode.FORBIDDEN: 403,
    ErrorCode.INVALID_TOKEN: 401,
    ErrorCode.RESOURCE_NOT_FOUND: 404,
    ErrorCode.WEEK_NOT_FOUND: 404,
    ErrorCode.CONCURSO_NOT_FOUND: 404,
    ErrorCode.USER_NOT_FOUND: 404,
    ErrorCode.INVALID_WEEK_ORDER: 400,
    ErrorCode.WEEK_ALREADY_COMPLETED: 409,
    ErrorCode.WEEK_NOT_AVAILABLE: 423,
    ErrorCode.CONCURRENT_MODIFICATION: 409,
    ErrorCode.RATE_LIMIT_EXCEEDED: 429,
    ErrorCode.INTERNAL_ERROR: 500,
    ErrorCode.SERVICE_UNAVAILABLE: 503,
    ErrorCode.DATABASE_ERROR: 500,
    ErrorCode.CONCURSO_REQUIRED: 422,
    ErrorCode.INVALID_CONFIGURATION: 500,
}


class WeeklyQuestionsError(Exception):
    """Base class for all errors surfaced through the response envelope.

    Args:
        message: human-readable description, returned as the envelope `error`
        code: one of `ErrorCode`
        details: optional JSON-serializable context
    """

    def __init__(self, message: str, code: ErrorCode, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = HTTP_STATUS_BY_CODE[code]
        self.details = details

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code.value, "details": self.details}


class ValidationError(WeeklyQuestionsError):
    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message, ErrorCode.VALIDATION_ERROR, details)


class MissingFieldError(WeeklyQuestionsError):
    def __init__(self, field: str):
        super().__init__(f"{field} is required", ErrorCode.MISSING_REQUIRED_FIELD, {"field": field})


class UnauthorizedError(WeeklyQuestionsError):
    def __init__(self, message: str = "not authenticated"):
        super().__init__(message, ErrorCode.UNAUTHORIZED)


class InvalidTokenError(WeeklyQuestionsError):
    def __init__(self, message: str = "invalid token"):
        super().__init__(message, ErrorCode.INVALID_TOKEN)


class ForbiddenError(WeeklyQuestionsError):
    def __init__(self, message: str = "forbidden"):
        super().__init__(message, ErrorCode.FORBIDDEN)


class ResourceNotFoundError(WeeklyQuestionsError):
    def __init__(self, resource: str, identifier: Optional[str] = None, code: ErrorCode = ErrorCode.RESOURCE_NOT_FOUND):
        message = f"{resource} '{identifier}' not found" if identifier else f"{resource} not found"
        super().__init__(message, code, {"resource": resource, "identifier": identifier})


class WeekNotFoundError(ResourceNotFoundError):
    def __init__(self, week_number: int, contest_id: Optional[str] = None):
        super().__init__("week", str(week_number), ErrorCode.WEEK_NOT_FOUND)
        self.details = {"week_number": week_number, "contest_id": contest_id}


class ContestNotFoundError(ResourceNotFoundError):
    def __init__(self, contest_id: str):
        super().__init__("contest", contest_id, ErrorCode.CONCURSO_NOT_FOUND)


class UserNotFoundError(ResourceNotFoundError):
    def __init__(self, user_id: str):
        super().__init__("user", user_id, ErrorCode.USER_NOT_FOUND)


class InvalidStateError(WeeklyQuestionsError):
    """Raised when a week is completed out of order."""

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message, ErrorCode.INVALID_WEEK_ORDER, details)


class WeekAlreadyCompletedError(WeeklyQuestionsError):
    def __init__(self, week_number: int, user_id: str):
        super().__init__(
            f"week {week_number} was already completed",
            ErrorCode.WEEK_ALREADY_COMPLETED,
            {"week_number": week_number, "user_id": user_id},
        )


class WeekNotAvailableError(WeeklyQuestionsError):
    def __init__(self, week_number: int, reason: str):
        super().__init__(
            f"week {week_number} is not available: {reason}",
            ErrorCode.WEEK_NOT_AVAILABLE,
            {"week_number": week_number, "reason": reason},
        )


class ConcurrentModificationError(WeeklyQuestionsError):
    def __init__(self, resource: str, identifier: str):
        super().__init__(
            f"concurrent modification detected on {resource}",
            ErrorCode.CONCURRENT_MODIFICATION,
            {"resource": resource, "identifier": identifier},
        )


class RateLimitError(WeeklyQuestionsError):
    def __init__(self, limit: int, window_seconds: int, retry_after: int):
        super().__init__(
            "rate limit exceeded",
            ErrorCode.RATE_LIMIT_EXCEEDED,
            {"limit": limit, "window_seconds": window_seconds, "retry_after": retry_after},
        )
        self.retry_after = retry_after


class DatabaseError(WeeklyQuestionsError):
    def __init__(self, message: str, original: Optional[BaseException] = None):
        super().__init__(
            f"database error: {message}",
            ErrorCode.DATABASE_ERROR,
            {"original_error": str(original)} if original is not None else None,
        )


class ServiceUnavailableError(WeeklyQuestionsError):
    def __init__(self, service: str, reason: Optional[str] = None):
        super().__init__(
            f"service {service} unavailable",
            ErrorCode.SERVICE_UNAVAILABLE,
            {"service": service, "reason": reason},
        )


class ContestRequiredError(WeeklyQuestionsError):
    def __init__(self):
        super().__init__("contest not configured", ErrorCode.CONCURSO_REQUIRED)


class ConfigurationError(WeeklyQuestionsError):
    """Startup-fatal configuration problem; never recovered per request."""

    def __init__(self, message: str, config_key: Optional[str] = None):
        super().__init__(
            f"configuration error: {message}",
            ErrorCode.INVALID_CONFIGURATION,
            {"config_key": config_key},
        )
        self.config_key = config_key


class InternalError(WeeklyQuestionsError):
    def __init__(self, message: str = "internal server error"):
        super().__init__(message, ErrorCode.INTERNAL_ERROR)


def error_code_of(exc: BaseException) -> ErrorCode:
    """Return the semantic code for any exception, INTERNAL_ERROR if unknown."""
    if isinstance(exc, WeeklyQuestionsError):
        return exc.code
    return ErrorCode.INTERNAL_ERROR
