# tests/test_http_app.py
"""Tests for the HTTP ingress"""
import json

import pytest
from fastapi.testclient import TestClient

from conftest import DEFAULT_TARGET
from relay.config import Settings
from relay.core.ports import QueueStoreError
from relay.infra.health_checks import AsyncHealthChecker, ConsumerHealthCheck, QueueStoreHealthCheck
from relay.transport.http_app import create_app
from relay.transport.queue_consumer import QueueConsumer


@pytest.fixture
def settings():
    return Settings(_env_file=None, app_env="dev", enable_request_logging=False)


@pytest.fixture
def health_checker(store):
    return AsyncHealthChecker([QueueStoreHealthCheck(store)])


@pytest.fixture
def client(dispatcher, health_checker, settings):
    app = create_app(dispatcher, health_checker=health_checker, settings=settings)
    with TestClient(app) as test_client:
        yield test_client


class TestPostMessages:
    def test_up_directive_accepted(self, client, store):
        response = client.post("/messages", json={"up": "org/app"})

        assert response.status_code == 200
        assert response.json() == {"status": "success", "message": "Message processed successfully"}
        assert json.loads(store.items(DEFAULT_TARGET)[0]) == {
            "repo": "org/app",
            "branch": "refs/heads/main",
            "type": "service-up",
            "dir": "/srv/app",
            "commands": ["start.sh"],
        }

    def test_custom_target_queue(self, client, store):
        response = client.post("/messages", json={"down": "org/custom"})

        assert response.status_code == 200
        assert store.items(DEFAULT_TARGET) == []
        payload = json.loads(store.items("custom:queue")[0])
        assert payload["type"] == "service-down"
        assert payload["commands"] == ["docker compose down"]

    def test_missing_action_field(self, client, store):
        response = client.post("/messages", json={"foo": "bar"})

        assert response.status_code == 400
        assert "message must contain either 'up', 'down', or 'restart' field" in response.json()["error"]
        assert store.pushes == []

    def test_several_action_fields(self, client, store):
        response = client.post("/messages", json={"up": "org/app", "down": "org/app"})

        assert response.status_code == 400
        assert "exactly one" in response.json()["error"]
        assert store.pushes == []

    def test_malformed_json(self, client, store):
        response = client.post(
            "/messages",
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json()["error"].startswith("Invalid JSON")
        assert store.pushes == []

    def test_unknown_repository(self, client, store):
        response = client.post("/messages", json={"restart": "org/missing"})

        assert response.status_code == 500
        assert response.json()["error"] == (
            "Failed to process message: no configuration found for repository: org/missing"
        )
        assert store.pushes == []

    def test_delivery_failure(self, client, store):
        store.push_error = QueueStoreError("connection reset")

        response = client.post("/messages", json={"up": "org/app"})

        assert response.status_code == 500
        assert "failed to push notification to poppit:notifications" in response.json()["error"]

    @pytest.mark.parametrize("method", ["get", "put", "delete"])
    def test_other_methods_not_allowed(self, client, store, method):
        response = getattr(client, method)("/messages")

        assert response.status_code == 405
        assert store.pushes == []

    def test_request_id_round_trip(self, client):
        response = client.post(
            "/messages", json={"up": "org/app"}, headers={"X-Request-ID": "req-123"}
        )
        assert response.headers["X-Request-ID"] == "req-123"

    def test_request_id_generated(self, client):
        response = client.post("/messages", json={"up": "org/app"})
        assert response.headers.get("X-Request-ID")


class TestProbes:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    def test_health_ignores_store(self, client, store):
        store.ping_error = QueueStoreError("down")
        assert client.get("/health").status_code == 200

    def test_ready_when_store_answers(self, client):
        response = client.get("/ready")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    def test_not_ready_when_store_down(self, client, store):
        store.ping_error = QueueStoreError("connection refused")

        response = client.get("/ready")

        assert response.status_code == 503
        assert response.json() == {"status": "unhealthy"}

    def test_not_ready_when_ping_false(self, client, store):
        store.ping_result = False
        assert client.get("/ready").status_code == 503


class TestMetricsEndpoint:
    def test_metrics_reflect_dispatches(self, client):
        client.post("/messages", json={"up": "org/app"})
        client.post("/messages", json={"up": "org/missing"})

        counters = client.get("/metrics").json()["counters"]

        assert counters["directives_received_total{origin=http}"] == 2
        assert counters["work_orders_sent_total{action=up,origin=http}"] == 1
        assert counters["dispatch_failures_total{origin=http,reason=unknown_repository}"] == 1

    def test_metrics_disabled(self, dispatcher):
        settings = Settings(_env_file=None, enable_metrics=False)
        with TestClient(create_app(dispatcher, settings=settings)) as client:
            assert client.get("/metrics").status_code == 404


class TestDocs:
    def test_docs_hidden_in_production(self, dispatcher):
        settings = Settings(_env_file=None, app_env="prod")
        with TestClient(create_app(dispatcher, settings=settings)) as client:
            assert client.get("/openapi.json").status_code == 404

    def test_openapi_documents_body(self, client):
        schema = client.get("/openapi.json").json()
        body = schema["paths"]["/messages"]["post"]["requestBody"]
        assert set(body["content"]["application/json"]["schema"]["properties"]) == {
            "up", "down", "restart",
        }


class TestDetailedHealth:
    def test_stopped_consumer_reported(self, dispatcher, store, health_checker, settings):
        health_checker.add(ConsumerHealthCheck(QueueConsumer(dispatcher, store, "service:commands")))
        app = create_app(dispatcher, health_checker=health_checker, settings=settings)

        with TestClient(app) as client:
            detailed = client.get("/health/detailed")
            ready = client.get("/ready")

        assert detailed.status_code == 200
        body = detailed.json()
        assert body["status"] == "degraded"
        assert body["checks"]["queue_consumer"]["status"] == "degraded"
        assert body["checks"]["queue_store"]["status"] == "healthy"
        assert ready.json() == {"status": "healthy"}

    def test_store_down_reported(self, client, store):
        store.ping_error = QueueStoreError("connection refused")
        body = client.get("/health/detailed").json()
        assert body["status"] == "unhealthy"
        assert "connection refused" in body["checks"]["queue_store"]["error"]

    def test_disabled_with_metrics(self, dispatcher):
        settings = Settings(_env_file=None, enable_metrics=False)
        with TestClient(create_app(dispatcher, settings=settings)) as client:
            assert client.get("/health/detailed").status_code == 404
