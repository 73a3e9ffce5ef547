"""Global exception handlers for the FastAPI application.

Every error leaves the API as the same envelope:
``{"error": {"code", "message", "timestamp", "details"?}}``.  Full stack
traces are logged server-side and **never** leaked to the client.
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from waydroid_api.errors import ApiError, ErrorCode, error_from_exception, format_error_response

logger = logging.getLogger(__name__)

# Nearest taxonomy member for framework-raised HTTP errors.
_CODE_BY_STATUS: dict[int, ErrorCode] = {
    400: ErrorCode.INVALID_INPUT,
    401: ErrorCode.UNAUTHORIZED,
    403: ErrorCode.FORBIDDEN,
    404: ErrorCode.NOT_FOUND,
    413: ErrorCode.REQUEST_TOO_LARGE,
    429: ErrorCode.RATE_LIMIT_EXCEEDED,
}

_JSON_ERROR_TYPES = frozenset({"json_invalid", "json_type"})


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or "-"


# ------------------------------------------------------------------
# Individual exception handlers
# ------------------------------------------------------------------

async def global_exception_handler(
    request: Request, exc: Exception
) -> JSONResponse:
    """Catch-all for any unhandled exception -- returns 500."""
    logger.error(
        "Unhandled exception on %s %s [request_id=%s]",
        request.method,
        request.url.path,
        _request_id(request),
        exc_info=exc,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=format_error_response(
            code=ErrorCode.INTERNAL_ERROR,
            message="Internal server error",
        ),
    )


async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    """Handle Starlette/FastAPI ``HTTPException`` -- preserves status code."""
    logger.warning(
        "HTTP %s on %s %s [request_id=%s]: %s",
        exc.status_code,
        request.method,
        request.url.path,
        _request_id(request),
        exc.detail,
    )
    code = _CODE_BY_STATUS.get(exc.status_code)
    if code is None:
        code = ErrorCode.INTERNAL_ERROR if exc.status_code >= 500 else ErrorCode.INVALID_INPUT
    return JSONResponse(
        status_code=exc.status_code,
        content=format_error_response(
            code=code,
            message=str(exc.detail) if exc.detail else "Error",
        ),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Malformed JSON -> INVALID_JSON, anything else -> INVALID_INPUT (both 400)."""
    errors = exc.errors()
    logger.warning(
        "Validation error on %s %s [request_id=%s]: %s",
        request.method,
        request.url.path,
        _request_id(request),
        errors,
    )
    if any(err.get("type") in _JSON_ERROR_TYPES for err in errors):
        code, message = ErrorCode.INVALID_JSON, "Request body is not valid JSON"
    else:
        code, message = ErrorCode.INVALID_INPUT, "Request validation failed"
    fields = [
        {
            "loc": [str(part) for part in err.get("loc", ())],
            "msg": str(err.get("msg", "")),
            "type": str(err.get("type", "")),
        }
        for err in errors
    ]
    return JSONResponse(
        status_code=code.status_code,
        content=format_error_response(code=code, message=message, details={"errors": fields}),
    )


async def api_error_handler(
    request: Request, exc: ApiError
) -> JSONResponse:
    """Handle :class:`ApiError` subclasses -- status comes from the taxonomy."""
    if exc.status_code >= 500:
        logger.error(
            "%s on %s %s [request_id=%s]: %s",
            exc.code.value, request.method, request.url.path, _request_id(request), exc.message,
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=error_from_exception(exc),
    )


# ------------------------------------------------------------------
# Registration helper
# ------------------------------------------------------------------

def setup_exception_handlers(app: FastAPI) -> None:
    """Register all global exception handlers on *app*.

    Call this **after** the app is created but **before** routers are
    included so that every route is covered.
    """
    app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(ApiError, api_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, global_exception_handler)  # type: ignore[arg-type]
