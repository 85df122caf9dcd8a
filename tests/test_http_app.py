# tests/test_http_app.py
"""Tests for the HTTP surface (courier/transport/http_app.py)."""
from __future__ import annotations

import logging

import pytest
from fastapi.testclient import TestClient

from conftest import ScriptedProvider
from courier.config import DispatchConfig, Settings
from courier.core.dispatch.engine import DispatchEngine
from courier.transport.http_app import build_engine, create_app


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _fast_engine(primary: ScriptedProvider, fallback: ScriptedProvider):
    """Engine factory with no delays, so requests finish immediately."""
    def factory(s: Settings) -> DispatchEngine:
        return DispatchEngine(
            primary,
            fallback,
            config=DispatchConfig(retry_delay_ms=0, rate_limit_ms=0),
            outcome_log_limit=s.outcome_log_limit,
        )
    return factory


@pytest.fixture
def app(primary, fallback):
    return create_app(
        Settings(enable_request_logging=False),
        engine_factory=_fast_engine(primary, fallback),
    )


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


PAYLOAD = {"destination": "user@example.com", "subject": "Test", "body": "This is a test email"}


# ---------------------------------------------------------------------------
# POST /messages
# ---------------------------------------------------------------------------

class TestSendMessage:
    def test_returns_outcome(self, client, primary):
        resp = client.post("/messages", json=PAYLOAD)

        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert data["provider_name"] == "primary"
        assert data["attempt_count"] == 1
        assert data["message_id"]
        assert primary.calls[0].destination == "user@example.com"
        assert primary.calls[0].subject == "Test"

    def test_fallback_outcome(self, client, primary):
        primary.default = False
        data = client.post("/messages", json=PAYLOAD).json()
        assert data["provider_name"] == "fallback"
        assert data["attempt_count"] == 1

    def test_total_failure_is_200_with_error(self, client, primary, fallback):
        primary.default = False
        fallback.default = False

        resp = client.post("/messages", json=PAYLOAD)

        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is False
        assert data["attempt_count"] == 5
        assert data["error_message"] == "Failed to send message via fallback"

    def test_no_wait_returns_202(self, client):
        resp = client.post("/messages?wait=false", json=PAYLOAD)
        assert resp.status_code == 202
        data = resp.json()
        assert data["message_id"]
        assert data["queue_size"] >= 0

    def test_metadata_passed_through(self, client, primary):
        client.post("/messages", json={**PAYLOAD, "metadata": {"campaign": "spring"}})
        assert primary.calls[0].metadata["campaign"] == "spring"

    def test_missing_destination_rejected(self, client, primary):
        resp = client.post("/messages", json={"subject": "x"})
        assert resp.status_code == 422
        assert primary.call_count == 0

    def test_request_id_header(self, client):
        resp = client.post("/messages", json=PAYLOAD, headers={"X-Request-ID": "req-1"})
        assert resp.headers["X-Request-ID"] == "req-1"

    def test_request_id_reaches_message_metadata(self, client, primary):
        client.post("/messages", json=PAYLOAD, headers={"X-Request-ID": "req-9"})
        assert primary.calls[0].metadata["request_id"] == "req-9"

    def test_request_id_on_dispatch_logs(self, client, caplog):
        with caplog.at_level(logging.INFO, logger="courier.core.dispatch.engine"):
            data = client.post("/messages", json=PAYLOAD, headers={"X-Request-ID": "req-10"}).json()

        dispatch_logs = [r for r in caplog.records if r.name == "courier.core.dispatch.engine"]
        assert dispatch_logs
        assert all(r.request_id == "req-10" for r in dispatch_logs)
        assert dispatch_logs[-1].message_id == data["message_id"]


# ---------------------------------------------------------------------------
# GET /outcomes, /health, /metrics
# ---------------------------------------------------------------------------

class TestReadEndpoints:
    def test_outcomes_in_order(self, client):
        ids = [client.post("/messages", json=PAYLOAD).json()["message_id"] for _ in range(3)]

        data = client.get("/outcomes").json()

        assert data["count"] == 3
        assert [o["message_id"] for o in data["outcomes"]] == ids

    def test_outcomes_limit(self, client):
        for _ in range(3):
            client.post("/messages", json=PAYLOAD)
        data = client.get("/outcomes?limit=1").json()
        assert data["count"] == 1

    def test_health_closed(self, client):
        data = client.get("/health").json()
        assert data["status"] == "healthy"
        assert data["circuit_breaker"]["state"] == "closed"
        assert data["queue_size"] == 0

    def test_health_degraded_when_breaker_open(self, client, app):
        breaker = app.state.queue.engine.circuit_breaker
        for _ in range(breaker.failure_threshold):
            breaker.record_failure()

        data = client.get("/health").json()

        assert data["status"] == "degraded"
        assert data["circuit_breaker"]["state"] == "open"

    def test_breaker_open_outcome_over_http(self, client, app, primary):
        breaker = app.state.queue.engine.circuit_breaker
        for _ in range(breaker.failure_threshold):
            breaker.record_failure()

        data = client.post("/messages", json=PAYLOAD).json()

        assert data["success"] is False
        assert data["error_message"] == "circuit breaker is open"
        assert data["provider_name"] is None
        assert primary.call_count == 0

    def test_metrics(self, client):
        client.post("/messages", json=PAYLOAD)
        data = client.get("/metrics").json()
        assert data["counters"]["dispatch_outcomes_total{status=success}"] == 1
        assert "dispatch_duration_seconds" in data["histograms"]


class TestBuildEngine:
    def test_uses_settings(self):
        s = Settings(dispatch_max_retries=2, breaker_failure_threshold=4, primary_provider_name="ses")
        engine = build_engine(s)
        assert engine.config.max_retries == 2
        assert engine.circuit_breaker.failure_threshold == 4
        assert engine.primary.name == "ses"
