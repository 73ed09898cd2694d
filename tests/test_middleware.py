# tests/test_middleware.py
"""Tests for relay/transport/middleware.py: request ID, logging, error handling."""
from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.testclient import TestClient

from relay.infra.metrics import get_metrics_collector
from relay.transport.middleware import (
    RequestIDMiddleware,
    RequestLoggingMiddleware,
    ErrorHandlingMiddleware,
)


def _build_app(raise_for: set[str] | None = None, logging_enabled: bool = True):
    """Build a minimal FastAPI app with middleware for testing."""
    app = FastAPI()
    # Last added is outermost: RequestID wraps logging, which wraps ErrorHandling
    app.add_middleware(ErrorHandlingMiddleware)
    app.add_middleware(RequestLoggingMiddleware, enabled=logging_enabled)
    app.add_middleware(RequestIDMiddleware)

    raise_for = raise_for or set()

    @app.get("/test")
    def test_endpoint():
        if "/test" in raise_for:
            raise RuntimeError("boom")
        return {"ok": True}

    @app.get("/health")
    def health_endpoint():
        return {"status": "healthy"}

    @app.post("/messages")
    def messages_endpoint():
        if "/messages" in raise_for:
            raise RuntimeError("dispatch boom")
        return {"status": "success"}

    return app


# ============================================================================
# RequestIDMiddleware
# ============================================================================

class TestRequestIDMiddleware:
    def test_generates_request_id(self):
        client = TestClient(_build_app())
        resp = client.get("/test")
        assert resp.status_code == 200
        # UUID has 36 chars with dashes
        assert len(resp.headers["X-Request-ID"]) >= 32

    def test_preserves_existing_request_id(self):
        client = TestClient(_build_app())
        custom_id = "my-custom-request-id-123"
        resp = client.get("/test", headers={"X-Request-ID": custom_id})
        assert resp.headers["X-Request-ID"] == custom_id


# ============================================================================
# RequestLoggingMiddleware
# ============================================================================

class TestRequestLoggingMiddleware:
    def test_logs_start_and_completion(self, caplog):
        client = TestClient(_build_app())
        with caplog.at_level(logging.INFO, logger="relay.transport.middleware"):
            client.get("/test", headers={"X-Request-ID": "req-1"})

        records = [r for r in caplog.records if r.name == "relay.transport.middleware"]
        messages = [r.getMessage() for r in records]
        assert "Request started: GET /test" in messages
        assert any(m.startswith("Request completed: GET /test status=200") for m in messages)
        assert all(getattr(r, "origin", None) == "http" for r in records)

    def test_disabled(self, caplog):
        client = TestClient(_build_app(logging_enabled=False))
        with caplog.at_level(logging.INFO, logger="relay.transport.middleware"):
            client.get("/test")
        assert not [r for r in caplog.records if r.name == "relay.transport.middleware"]


# ============================================================================
# ErrorHandlingMiddleware
# ============================================================================

class TestErrorHandlingMiddleware:
    def test_normal_request_passes_through(self):
        client = TestClient(_build_app(), raise_server_exceptions=False)
        resp = client.get("/test")
        assert resp.status_code == 200
        assert resp.json() == {"ok": True}

    def test_generic_error_returns_500(self):
        client = TestClient(_build_app(raise_for={"/test"}), raise_server_exceptions=False)
        resp = client.get("/test", headers={"X-Request-ID": "req-err"})
        assert resp.status_code == 500
        assert resp.json() == {"error": "Internal server error", "request_id": "req-err"}

    def test_unhandled_error_counted_by_route(self):
        client = TestClient(_build_app(raise_for={"/messages", "/test"}), raise_server_exceptions=False)
        client.post("/messages")
        client.get("/test")

        metrics = get_metrics_collector()
        assert metrics.get_counter("http_unhandled_errors_total", route="/messages") == 1
        assert metrics.get_counter("http_unhandled_errors_total", route="other") == 1


class TestRequestIDValidation:
    def test_oversized_request_id_replaced(self):
        client = TestClient(_build_app())
        resp = client.get("/test", headers={"X-Request-ID": "x" * 500})
        assert resp.headers["X-Request-ID"] != "x" * 500
        assert len(resp.headers["X-Request-ID"]) == 36


class TestRequestMetrics:
    def test_requests_counted_per_route(self):
        client = TestClient(_build_app())
        client.post("/messages")
        client.get("/test")

        metrics = get_metrics_collector()
        assert metrics.get_counter("http_requests_total", method="POST", route="/messages", status=200) == 1
        assert metrics.get_counter("http_requests_total", method="GET", route="other", status=200) == 1

    def test_counted_when_logging_disabled(self):
        client = TestClient(_build_app(logging_enabled=False))
        client.get("/health")
        assert get_metrics_collector().get_counter(
            "http_requests_total", method="GET", route="/health", status=200
        ) == 1

    def test_probe_requests_logged_at_debug(self, caplog):
        client = TestClient(_build_app())
        with caplog.at_level(logging.DEBUG, logger="relay.transport.middleware"):
            client.get("/health")

        records = [r for r in caplog.records if r.name == "relay.transport.middleware"]
        assert records
        assert all(r.levelno == logging.DEBUG for r in records)
