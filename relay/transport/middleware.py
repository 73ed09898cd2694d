# relay/transport/middleware.py
import time
import uuid
from typing import Callable
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp
from relay.infra.logging_config import get_logger, LogContext
from relay.infra.metrics import RelayMetrics

logger = get_logger(__name__)

ORIGIN = "http"

# Routes the relay serves; anything else is counted as "other" to keep
# metric label cardinality bounded.
KNOWN_ROUTES = frozenset({"/messages", "/health", "/ready", "/health/detailed", "/metrics"})

# Probe traffic is logged at DEBUG so it does not drown directive requests.
PROBE_ROUTES = frozenset({"/health", "/ready"})

MAX_REQUEST_ID_LENGTH = 128


def route_label(path: str) -> str:
    return path if path in KNOWN_ROUTES else "other"


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Propagate the caller's X-Request-ID, or mint one.

    An incoming ID that is empty, too long or not printable ASCII is
    replaced, since it ends up in every log line of the dispatch.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = self._accept(request.headers.get("X-Request-ID")) or str(uuid.uuid4())
        request.state.request_id = request_id

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    @staticmethod
    def _accept(candidate: str | None) -> str | None:
        if not candidate or len(candidate) > MAX_REQUEST_ID_LENGTH:
            return None
        if not (candidate.isascii() and candidate.isprintable()):
            return None
        return candidate


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log each request and record http_requests_total / http_request_seconds"""

    def __init__(self, app: ASGIApp, enabled: bool = True):
        super().__init__(app)
        self.enabled = enabled

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        route = route_label(request.url.path)
        start = time.perf_counter()

        if not self.enabled:
            response = await call_next(request)
            RelayMetrics.http_request(
                request.method, route, response.status_code, time.perf_counter() - start
            )
            return response

        log_ctx = LogContext(
            logger,
            request_id=getattr(request.state, "request_id", "unknown"),
            origin=ORIGIN,
        )
        log = log_ctx.debug if route in PROBE_ROUTES else log_ctx.info

        log(
            f"Request started: {request.method} {request.url.path}",
            extra={
                "method": request.method,
                "path": request.url.path,
                "client_ip": request.client.host if request.client else None,
            }
        )

        try:
            response = await call_next(request)
        except Exception as exc:
            duration_ms = (time.perf_counter() - start) * 1000
            log_ctx.error(
                f"Request failed: {request.method} {request.url.path} "
                f"error={exc.__class__.__name__} duration={duration_ms:.2f}ms",
                extra={"method": request.method, "path": request.url.path},
                exc_info=True
            )
            raise

        duration = time.perf_counter() - start
        RelayMetrics.http_request(request.method, route, response.status_code, duration)

        # Rejected or failed directives are worth a warning even when the
        # dispatcher already logged the cause.
        if route == "/messages" and response.status_code >= 400:
            log = log_ctx.warning
        log(
            f"Request completed: {request.method} {request.url.path} "
            f"status={response.status_code} duration={duration * 1000:.2f}ms",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": duration * 1000,
            }
        )
        return response


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Last-resort 500 for exceptions that escaped the route exception handlers"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)
        except Exception as exc:
            request_id = getattr(request.state, "request_id", "unknown")
            route = route_label(request.url.path)
            RelayMetrics.http_unhandled_error(route)

            LogContext(logger, request_id=request_id, origin=ORIGIN).error(
                f"Unhandled exception on {route}: {exc.__class__.__name__}: {exc}",
                exc_info=True
            )

            return JSONResponse(
                status_code=500,
                content={
                    "error": "Internal server error",
                    "request_id": request_id,
                }
            )
