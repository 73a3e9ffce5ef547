"""Request pipeline -- the control plane wrapped around every HTTP request.

    Received -> VersionResolved -> rate limit (429 ends here)
             -> body size check (chunked bodies buffered) -> handler -> MetricsRecorded
             -> lifecycle webhook dispatched (async) -> Responded

Requests rejected before the handler runs are answered here with the
error envelope and are not counted as endpoint metrics.  Every response,
rejected or not, gets ``X-API-Version``, ``X-Supported-Versions`` and
``X-Request-ID``, and one ``METRIC | type=http_request`` access line.

Implemented as a pure ASGI middleware (not BaseHTTPMiddleware) so it
cannot interfere with streaming responses.
"""

from __future__ import annotations

import logging
import time
import uuid

from fastapi.responses import JSONResponse
from starlette.datastructures import Headers, QueryParams
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from waydroid_api.api.rate_limit import Tier, client_key_from
from waydroid_api.api.versioning import strip_prefix
from waydroid_api.auth import bearer_token
from waydroid_api.control_plane import ControlPlane
from waydroid_api.errors import (
    ApiError,
    InternalError,
    InvalidInputError,
    RateLimitExceededError,
    RequestTooLargeError,
    error_from_exception,
)

logger = logging.getLogger(__name__)
access_logger = logging.getLogger("waydroid_api.access")

LIFECYCLE_EVENT_KEY = "lifecycle_event"
UNMATCHED_ENDPOINT = "<unmatched>"


class RequestPipeline:
    """Composes version negotiation, rate limiting, metrics and webhooks."""

    def __init__(self, app: ASGIApp, control_plane: ControlPlane) -> None:
        self.app = app
        self.control_plane = control_plane

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        cp = self.control_plane
        t0 = time.perf_counter()
        headers = Headers(scope=scope)
        state: dict = scope.setdefault("state", {})

        request_id = headers.get("x-request-id") or str(uuid.uuid4())
        peer = scope["client"][0] if scope.get("client") else None
        client_key = client_key_from(headers, peer)
        tier = (
            Tier.AUTHENTICATED
            if cp.credentials.is_valid(bearer_token(headers.get("authorization")))
            else Tier.DEFAULT
        )
        state.update(request_id=request_id, client_key=client_key, tier=tier.value)

        method: str = scope.get("method", "?")
        raw_path: str = scope.get("path", "")
        version = cp.versions.default
        status_code = 0

        async def send_with_headers(message: Message) -> None:
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message.get("status", 0)
                raw_headers: list = list(message.get("headers", []))
                raw_headers.append((b"x-api-version", version.encode()))
                raw_headers.append((b"x-supported-versions", cp.versions.supported_header.encode()))
                raw_headers.append((b"x-request-id", request_id.encode()))
                message = {**message, "headers": raw_headers}
            await send(message)

        def access(path: str) -> None:
            _emit(
                method, path, status_code, (time.perf_counter() - t0) * 1000,
                client_key, tier.value, version, request_id,
            )

        # -- VersionResolved --
        try:
            version = cp.versions.resolve(
                raw_path, headers, QueryParams(scope.get("query_string", b"")),
            )
        except ApiError as exc:
            await _reject(exc, scope, receive, send_with_headers)
            access(raw_path)
            return
        state["api_version"] = version
        path = strip_prefix(raw_path)

        # -- rate limit --
        decision = cp.rate_limiter.check(client_key, tier)
        if not decision.allowed:
            retry_after = decision.retry_after_seconds
            logger.warning(
                "Rate limit exceeded for %s (tier=%s), retry in %ss",
                client_key, tier.value, retry_after,
            )
            await _reject(
                RateLimitExceededError(retry_after), scope, receive, send_with_headers,
                headers={"Retry-After": str(retry_after)},
            )
            access(path)
            return

        # -- body size --
        try:
            _check_body_size(headers, cp.settings.MAX_BODY_BYTES)
            if "content-length" not in headers:
                receive = await _buffer_body(receive, cp.settings.MAX_BODY_BYTES)
        except ApiError as exc:
            await _reject(exc, scope, receive, send_with_headers)
            access(path)
            return

        # -- HandlerInvoked --
        child_scope = dict(scope, path=path, raw_path=path.encode())
        try:
            await self.app(child_scope, receive, send_with_headers)
        except Exception as exc:
            cp.metrics.record(_endpoint_label(child_scope), time.perf_counter() - t0, True)
            if status_code != 0:
                # Response already started; nothing left to send.
                access(path)
                raise
            logger.error(
                "Unhandled exception on %s %s [request_id=%s]",
                method, path, request_id, exc_info=exc,
            )
            await _reject(InternalError(), scope, receive, send_with_headers)
            access(path)
            return

        # -- MetricsRecorded --
        is_error = status_code >= 400
        cp.metrics.record(_endpoint_label(child_scope), time.perf_counter() - t0, is_error)

        # -- WebhookDispatched --
        queued = state.pop(LIFECYCLE_EVENT_KEY, None)
        if queued is not None and not is_error:
            event, data = queued
            try:
                cp.dispatcher.dispatch(event, data)
            except Exception:
                logger.exception("Failed to dispatch %s webhook [request_id=%s]", event, request_id)

        access(path)


async def _reject(
    exc: ApiError,
    scope: Scope,
    receive: Receive,
    send: Send,
    headers: dict[str, str] | None = None,
) -> None:
    response = JSONResponse(
        status_code=exc.status_code,
        content=error_from_exception(exc),
        headers=headers,
    )
    await response(scope, receive, send)


def _check_body_size(headers: Headers, limit: int) -> None:
    raw = headers.get("content-length")
    if raw is None:
        return
    try:
        length = int(raw)
    except ValueError:
        raise InvalidInputError("Invalid Content-Length header")
    if length < 0:
        raise InvalidInputError("Invalid Content-Length header")
    if limit and length > limit:
        raise RequestTooLargeError(
            f"Request body exceeds {limit} bytes",
            details={"max_bytes": limit},
        )


async def _buffer_body(receive: Receive, limit: int) -> Receive:
    """Read a body sent without ``Content-Length`` (chunked) up to *limit*.

    Returns a receive callable that replays the buffered messages to the
    app and then falls through to the server's receive.
    """
    buffered: list[Message] = []
    size = 0
    while True:
        message = await receive()
        buffered.append(message)
        if message["type"] != "http.request":
            break
        size += len(message.get("body", b""))
        if limit and size > limit:
            raise RequestTooLargeError(
                f"Request body exceeds {limit} bytes",
                details={"max_bytes": limit},
            )
        if not message.get("more_body", False):
            break

    async def replay() -> Message:
        if buffered:
            return buffered.pop(0)
        return await receive()

    return replay


def _endpoint_label(scope: Scope) -> str:
    """Route template for metrics (``/webhooks/{webhook_id}``), not the raw path."""
    route = scope.get("route")
    if route is not None:
        return route.path
    endpoint = scope.get("endpoint")
    if endpoint is None:
        return UNMATCHED_ENDPOINT
    router = getattr(scope.get("app"), "router", None)
    for candidate in getattr(router, "routes", ()):
        if getattr(candidate, "endpoint", None) is endpoint:
            return candidate.path
    return UNMATCHED_ENDPOINT


def queue_event(state: object, event: str, data: dict | None = None) -> None:
    """Ask the pipeline to dispatch *event* once the response succeeds.

    *state* is ``request.state``; only the last queued event is sent.
    """
    setattr(state, LIFECYCLE_EVENT_KEY, (event, data or {}))


def _emit(
    method: str,
    path: str,
    status_code: int,
    wall_ms: float,
    client_key: str,
    tier: str,
    version: str,
    request_id: str,
) -> None:
    """Emit a structured METRIC line for the HTTP request."""
    line = " | ".join([
        "METRIC | type=http_request",
        f"method={method}",
        f"path={path}",
        f"status={status_code}",
        f"wall_ms={wall_ms:.0f}",
        f"client={client_key}",
        f"tier={tier}",
        f"version={version}",
        f"req_id={request_id}",
    ])
    if status_code >= 500:
        access_logger.error(line)
    elif status_code >= 400:
        access_logger.warning(line)
    else:
        access_logger.info(line)
