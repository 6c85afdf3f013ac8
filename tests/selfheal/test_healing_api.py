"""
Tests for the Healing API endpoints.
"""

import json
from unittest.mock import patch

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from selfheal.api.healing_endpoints import router as healing_router, set_healing_orchestrator
from selfheal.core.metrics import get_metrics_collector
from selfheal.core.models import HealingHistoryEntry
from selfheal.services.healing_orchestrator import HealingOrchestrator


@pytest.fixture
def app():
    """Create FastAPI app with healing router for testing."""
    app = FastAPI()
    app.include_router(healing_router)
    return app


@pytest.fixture
def client(app):
    """Create test client."""
    return TestClient(app)


@pytest.fixture
def orchestrator(healing_config, pattern_store, mock_ai_integration):
    """Orchestrator with a temporary store installed as the global instance."""
    orchestrator = HealingOrchestrator(healing_config, store=pattern_store, ai_integration=mock_ai_integration)
    set_healing_orchestrator(orchestrator)
    yield orchestrator
    set_healing_orchestrator(None)


class TestStatistics:
    """Test statistics and pattern views."""

    def test_empty_statistics(self, client, orchestrator):
        response = client.get("/healing/statistics")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "success"
        assert data["statistics"]["total_healings"] == 0
        assert data["statistics"]["success_rate"] == 0
        assert data["statistics"]["healing_mode"] == "aggressive"

    def test_statistics_after_outcomes(self, client, orchestrator, pattern_store):
        pattern_store.record_outcome("locator_healing", True)
        pattern_store.bump_success_rate("locator_healing")
        pattern_store.append_history(HealingHistoryEntry(timestamp=1, error="element not found", success=True,
                                                         strategy="locator_healing"))
        pattern_store.append_history(HealingHistoryEntry(timestamp=2, error="timeout", success=False,
                                                         strategies=["wait_healing"]))

        stats = client.get("/healing/statistics").json()["statistics"]

        assert stats["total_healings"] == 2
        assert stats["successful_healings"] == 1
        assert stats["failed_healings"] == 1
        assert stats["pattern_count"] == 1
        assert stats["strategy_stats"]["locator_healing"]["smoothed_success_rate"] == 0.75

    def test_patterns_sorted_best_first(self, client, orchestrator, pattern_store):
        pattern_store.record_outcome("wait_healing", False)
        pattern_store.record_outcome("locator_healing", True)

        data = client.get("/healing/patterns").json()

        assert data["total"] == 2
        assert [p["name"] for p in data["patterns"]] == ["locator_healing", "wait_healing"]
        assert data["patterns"][0]["smoothed_success_rate"] == 0.5


class TestHistory:
    """Test the history endpoint."""

    def test_history_limit(self, client, orchestrator, pattern_store):
        for i in range(5):
            pattern_store.append_history(HealingHistoryEntry(timestamp=i, error=f"error {i}", success=True,
                                                             context={"testType": "ui", "pageUrl": ""}))

        data = client.get("/healing/history", params={"limit": 2}).json()

        assert data["total"] == 2
        assert [entry["timestamp"] for entry in data["history"]] == [3, 4]
        assert data["history"][0]["context"]["testType"] == "ui"

    def test_history_limit_validated(self, client, orchestrator):
        assert client.get("/healing/history", params={"limit": 0}).status_code == 422


class TestMetricsEndpoints:
    """Test metrics views and export."""

    def test_metrics(self, client):
        get_metrics_collector().record_test_execution("healed", 12.0)

        data = client.get("/healing/metrics").json()

        assert data["status"] == "success"
        assert data["metrics"]["healed_tests"] == 1

    def test_json_export(self, client):
        response = client.get("/healing/metrics/export")

        assert response.status_code == 200
        assert "total_tests" in json.loads(response.text)

    def test_prometheus_export(self, client):
        response = client.get("/healing/metrics/export", params={"format": "prometheus"})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert "selfheal_tests_total 0" in response.text

    def test_unknown_export_format(self, client):
        assert client.get("/healing/metrics/export", params={"format": "xml"}).status_code == 422


class TestConfigAndClassification:
    """Test configuration and classification endpoints."""

    def test_config(self, client, healing_config):
        with patch("selfheal.api.healing_endpoints.get_healing_config", return_value=healing_config):
            data = client.get("/healing/config").json()

        assert data["config"]["max_healing_attempts"] == 2
        assert data["config"]["enable_ai"] is False

    @pytest.mark.parametrize("message,classification,healable", [
        ("Element not found: #login", "locator_failure", True),
        ("Timeout 30000ms exceeded", "wait_failure", True),
        ("KeyError: 'user'", "unknown_failure", False),
    ])
    def test_classify(self, client, message, classification, healable):
        response = client.post("/healing/classify", json={"error_message": message})

        assert response.status_code == 200
        assert response.json() == {
            "error_message": message,
            "classification": classification,
            "healable": healable
        }

    def test_classify_requires_message(self, client):
        assert client.post("/healing/classify", json={}).status_code == 422


def test_health_endpoint():
    from selfheal.main import app as main_app

    response = TestClient(main_app).get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
