# relay/transport/http_app.py
"""
HTTP ingress application.

Built by ``create_app`` from already-constructed collaborators: the
dispatcher (registry + store) and an optional health checker. The app
owns no background work; the queue consumer and the shutdown sequence
belong to ``relay.main``.

Routes:
- POST /messages  directive ingress (any other method → 405)
- GET  /health    liveness
- GET  /ready     queue store readiness
- GET  /health/detailed  all checks incl. consumer liveness (when enable_metrics)
- GET  /metrics   in-process counters (when enable_metrics)
"""
from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from relay.config import Settings, settings as default_settings
from relay.core.dispatcher import Dispatcher
from relay.infra.health_checks import AsyncHealthChecker, HealthStatus
from relay.infra.logging_config import get_logger
from relay.infra.metrics import get_metrics_collector
from relay.transport.messages import post_message_handler
from relay.transport.middleware import (
    RequestIDMiddleware,
    RequestLoggingMiddleware,
    ErrorHandlingMiddleware,
)
from relay.transport.schemas import DirectiveIn, ErrorOut, MessageAccepted

logger = get_logger(__name__)


def create_app(
    dispatcher: Dispatcher,
    *,
    health_checker: AsyncHealthChecker | None = None,
    settings: Settings | None = None,
) -> FastAPI:
    """Build the FastAPI app around an existing dispatcher."""
    settings = settings or default_settings

    # ========================================================================
    # LIFESPAN
    # ========================================================================

    @asynccontextmanager
    async def lifespan(fastapi_app: FastAPI):
        logger.info(
            f"HTTP ingress starting: env={settings.app_env}, "
            f"projects={len(dispatcher.registry)}, "
            f"default_target={dispatcher.default_target_queue}"
        )
        yield
        logger.info("HTTP ingress stopped")

    app = FastAPI(
        title="Service Command Relay",
        description="Relays service up/down/restart directives to the executor queue",
        version="1.0.0",
        lifespan=lifespan,
        docs_url=None if settings.is_production else "/docs",
        redoc_url=None if settings.is_production else "/redoc",
        openapi_url=None if settings.is_production else "/openapi.json",
    )
    app.state.dispatcher = dispatcher
    app.state.health_checker = health_checker or AsyncHealthChecker()
    app.state.settings = settings

    app.add_middleware(ErrorHandlingMiddleware)
    app.add_middleware(RequestLoggingMiddleware, enabled=settings.enable_request_logging)
    app.add_middleware(RequestIDMiddleware)

    # ========================================================================
    # EXCEPTION HANDLERS
    # ========================================================================

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        """Render HTTP errors as {"error": detail}"""
        if exc.status_code >= 500:
            logger.error(f"Server error: {exc.detail}", extra={"status_code": exc.status_code})

        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle unexpected exceptions"""
        logger.error(f"Unhandled exception: {exc.__class__.__name__}", exc_info=True)
        message = "Internal server error" if settings.is_production else f"{exc.__class__.__name__}: {exc}"
        return JSONResponse(status_code=500, content={"error": message})

    # ========================================================================
    # ROUTES
    # ========================================================================

    @app.post(
        "/messages",
        response_model=MessageAccepted,
        responses={400: {"model": ErrorOut}, 500: {"model": ErrorOut}},
        openapi_extra={
            "requestBody": {
                "required": True,
                "content": {"application/json": {"schema": DirectiveIn.model_json_schema()}},
            }
        },
    )
    async def post_message(request: Request):
        """
        Directive ingress.

        Body: {"up": "<repo>"} | {"down": "<repo>"} | {"restart": "<repo>"}
        Responds after the work order has been enqueued (or failed).
        """
        return await post_message_handler(request)

    @app.get("/health")
    def health():
        """Liveness probe. Does not touch the queue store."""
        return {"status": "healthy"}

    @app.get("/ready")
    async def readiness(request: Request):
        """Readiness probe: critical checks only (queue store)."""
        result = await request.app.state.health_checker.run_checks(include_non_critical=False)

        if result["status"] == HealthStatus.UNHEALTHY.value:
            return JSONResponse(status_code=503, content={"status": "unhealthy"})

        return {"status": result["status"]}

    @app.get("/health/detailed")
    async def detailed_health(request: Request):
        """
        Every check, non-critical included (queue consumer liveness).
        Shares the enable_metrics switch with /metrics.
        """
        if not settings.enable_metrics:
            raise HTTPException(status_code=404, detail="Not found")
        return await request.app.state.health_checker.run_checks(include_non_critical=True)

    @app.get("/metrics")
    def metrics():
        """In-process dispatch counters and latency histograms."""
        if not settings.enable_metrics:
            raise HTTPException(status_code=404, detail="Not found")
        return get_metrics_collector().get_metrics()

    return app
