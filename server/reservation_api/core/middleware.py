"""Middleware for request correlation, trace context and access logging."""

import re
import time
import uuid
from typing import Callable, Optional

import structlog
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from .observability import REQUEST_COUNT, REQUEST_DURATION, get_logger

access_logger = get_logger("reservation_api.access")

TRACEPARENT_PATTERN = re.compile(r"^([0-9a-f]{2})-([0-9a-f]{32})-([0-9a-f]{16})-([0-9a-f]{2})$")


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Propagates ``X-Request-ID`` (generating one when absent).

    The id is stored on ``request.state``, bound into structlog's context
    variables for every log line emitted while handling the request, and
    echoed on the response.
    """

    def __init__(self, app: ASGIApp, header_name: str = "X-Request-ID"):
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(self.header_name) or str(uuid.uuid4())
        request.state.request_id = request_id

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        response = await call_next(request)
        response.headers[self.header_name] = request_id
        return response


def parse_traceparent(traceparent: str) -> Optional[dict]:
    """Parse a W3C ``traceparent`` header; returns None when it is unusable."""
    match = TRACEPARENT_PATTERN.match(traceparent)
    if not match:
        return None

    version, trace_id, parent_id, flags = match.groups()
    if version != "00" or trace_id == "0" * 32 or parent_id == "0" * 16:
        return None

    return {"trace_id": trace_id, "parent_id": parent_id, "flags": flags}


class TraceContextMiddleware(BaseHTTPMiddleware):
    """
    Continues or starts a W3C Trace Context for each request.

    https://www.w3.org/TR/trace-context/
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        incoming = request.headers.get("traceparent")
        tracestate = request.headers.get("tracestate")
        parsed = parse_traceparent(incoming) if incoming else None

        trace_id = parsed["trace_id"] if parsed else uuid.uuid4().hex
        flags = parsed["flags"] if parsed else "01"
        span_id = uuid.uuid4().hex[:16]

        request.state.trace_context = {
            "trace_id": trace_id,
            "span_id": span_id,
            "parent_span_id": parsed["parent_id"] if parsed else None,
            "flags": flags,
        }
        structlog.contextvars.bind_contextvars(trace_id=trace_id)

        response = await call_next(request)

        response.headers["traceparent"] = f"00-{trace_id}-{span_id}-{flags}"
        if tracestate:
            response.headers["tracestate"] = tracestate
        return response


class LoggingMiddleware(BaseHTTPMiddleware):
    """Access log and request metrics for every request outside ``skip_paths``."""

    def __init__(self, app: ASGIApp, skip_paths: Optional[list] = None):
        super().__init__(app)
        self.skip_paths = skip_paths or ["/health", "/metrics", "/favicon.ico"]

    @staticmethod
    def _client_ip(request: Request) -> str:
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()
        if request.client:
            return request.client.host
        return "unknown"

    @staticmethod
    def _route_template(request: Request) -> str:
        # Label by route template so ids do not explode metric cardinality
        route = request.scope.get("route")
        return getattr(route, "path", request.url.path)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in self.skip_paths:
            return await call_next(request)

        started = time.perf_counter()
        request_id = getattr(request.state, "request_id", "unknown")

        try:
            response = await call_next(request)
        except Exception as exc:
            access_logger.error(
                "request_failed",
                method=request.method,
                path=request.url.path,
                error=str(exc),
            )
            response = JSONResponse(
                status_code=500,
                content={
                    "type": "https://example.com/problems/internal-server-error",
                    "title": "Internal Server Error",
                    "status": 500,
                    "request_id": request_id,
                },
            )

        duration = time.perf_counter() - started
        endpoint = self._route_template(request)
        REQUEST_COUNT.labels(method=request.method, endpoint=endpoint, status_code=response.status_code).inc()
        REQUEST_DURATION.labels(method=request.method, endpoint=endpoint).observe(duration)

        log = access_logger.warning if response.status_code >= 400 else access_logger.info
        if response.status_code >= 500:
            log = access_logger.error
        log(
            "request_completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round(duration * 1000, 2),
            client_ip=self._client_ip(request),
        )
        return response


def setup_middleware(app, enable_logging: bool = True) -> None:
    """
    Install the middleware stack; the last added runs first.

    Args:
        app: FastAPI application instance
        enable_logging: Whether to install the access log middleware
    """
    if enable_logging:
        app.add_middleware(LoggingMiddleware)
    app.add_middleware(TraceContextMiddleware)
    app.add_middleware(RequestIDMiddleware)
