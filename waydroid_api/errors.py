"""Error taxonomy and the structured error envelope.

Every failure a client can see is one of the :class:`ErrorCode` members.
Handlers and the request pipeline raise :class:`ApiError` subclasses; the
exception handlers in ``middleware/exception_handler.py`` (and the
pipeline itself, for requests rejected before routing) turn them into
``{"error": {"code", "message", "timestamp", "details"?}}`` bodies.
"""

from datetime import datetime, timezone
from enum import Enum


class ErrorCode(str, Enum):
    """Closed set of error kinds reported on the wire."""

    UNAUTHORIZED = "ERR_UNAUTHORIZED"
    FORBIDDEN = "ERR_FORBIDDEN"
    NOT_FOUND = "ERR_NOT_FOUND"
    INVALID_INPUT = "ERR_INVALID_INPUT"
    RATE_LIMIT_EXCEEDED = "ERR_RATE_LIMIT_EXCEEDED"
    INTERNAL_ERROR = "ERR_INTERNAL_ERROR"
    TIMEOUT = "ERR_TIMEOUT"
    INVALID_VERSION = "ERR_INVALID_VERSION"
    COMMAND_FAILED = "ERR_COMMAND_FAILED"
    INVALID_JSON = "ERR_INVALID_JSON"
    REQUEST_TOO_LARGE = "ERR_REQUEST_TOO_LARGE"

    @property
    def status_code(self) -> int:
        return _STATUS_BY_CODE[self]


_STATUS_BY_CODE: dict[ErrorCode, int] = {
    ErrorCode.UNAUTHORIZED: 401,
    ErrorCode.FORBIDDEN: 403,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.INVALID_INPUT: 400,
    ErrorCode.RATE_LIMIT_EXCEEDED: 429,
    ErrorCode.INTERNAL_ERROR: 500,
    ErrorCode.TIMEOUT: 500,
    ErrorCode.INVALID_VERSION: 400,
    ErrorCode.COMMAND_FAILED: 500,
    ErrorCode.INVALID_JSON: 400,
    ErrorCode.REQUEST_TOO_LARGE: 413,
}


class ApiError(Exception):
    """Base for all errors that map onto the envelope."""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR
    default_message = "An unexpected error occurred"

    def __init__(self, message: str | None = None, *, details: dict | None = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.details = details

    @property
    def status_code(self) -> int:
        return self.code.status_code


class UnauthorizedError(ApiError):
    code = ErrorCode.UNAUTHORIZED
    default_message = "Unauthorized"


class ForbiddenError(ApiError):
    code = ErrorCode.FORBIDDEN
    default_message = "Forbidden"


class NotFoundError(ApiError):
    code = ErrorCode.NOT_FOUND
    default_message = "Not found"


class InvalidInputError(ApiError):
    code = ErrorCode.INVALID_INPUT
    default_message = "Invalid input"


class RateLimitExceededError(ApiError):
    code = ErrorCode.RATE_LIMIT_EXCEEDED
    default_message = "Rate limit exceeded"

    def __init__(self, retry_after: int, message: str | None = None):
        super().__init__(message, details={"retry_after": retry_after})
        self.retry_after = retry_after


class InternalError(ApiError):
    code = ErrorCode.INTERNAL_ERROR
    default_message = "Internal server error"


class CommandTimeoutError(ApiError):
    """The command executor gave up waiting on a waydroid command."""

    code = ErrorCode.TIMEOUT
    default_message = "Command timed out"


class InvalidVersionError(ApiError):
    code = ErrorCode.INVALID_VERSION
    default_message = "Unsupported API version"


class CommandFailedError(ApiError):
    """A waydroid command exited non-zero or could not be started."""

    code = ErrorCode.COMMAND_FAILED
    default_message = "Command failed"


class InvalidJSONError(ApiError):
    code = ErrorCode.INVALID_JSON
    default_message = "Request body is not valid JSON"


class RequestTooLargeError(ApiError):
    code = ErrorCode.REQUEST_TOO_LARGE
    default_message = "Request too large"


def utc_timestamp() -> str:
    """Current time as an ISO-8601 UTC string."""
    return datetime.now(timezone.utc).isoformat()


def format_error_response(
    *,
    code: ErrorCode,
    message: str,
    details: dict | None = None,
) -> dict:
    """Build a structured error envelope.

    Parameters
    ----------
    code : ErrorCode
        Member of the closed taxonomy.
    message : str
        Human-readable message.  Never a stack trace.
    details : dict | None
        Extra machine-readable context (e.g. ``{"retry_after": 7}``).
        Omitted from the body when ``None``.

    Returns
    -------
    dict
        ``{"error": {"code": ..., "message": ..., "timestamp": ..., "details"?: ...}}``
    """
    error: dict = {
        "code": code.value,
        "message": message,
        "timestamp": utc_timestamp(),
    }
    if details is not None:
        error["details"] = details
    return {"error": error}


def error_from_exception(exc: ApiError) -> dict:
    """Envelope for an :class:`ApiError` instance."""
    return format_error_response(code=exc.code, message=exc.message, details=exc.details)
