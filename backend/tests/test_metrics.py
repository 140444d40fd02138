"""
Tests for the metrics module and MetricsMiddleware.

CI-safe: No external dependencies or API keys required.
"""

import importlib
import os
import sys
from unittest.mock import patch, MagicMock

import pytest


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _reload_metrics(env_overrides=None):
    """Reload the metrics module with optional env var overrides."""
    env = env_overrides or {}
    with patch.dict(os.environ, env, clear=False):
        # Remove cached module so it re-evaluates globals
        if "metrics" in sys.modules:
            del sys.modules["metrics"]
        import metrics
        importlib.reload(metrics)
        return metrics


@pytest.fixture(autouse=True)
def _restore_disabled_metrics():
    yield
    _reload_metrics({"METRICS_ENABLED": "false"})


# ---------------------------------------------------------------------------
# Unit tests: metrics module
# ---------------------------------------------------------------------------

class TestMetricsModule:
    """Tests for backend/metrics.py"""

    def test_metrics_disabled_by_default(self):
        """METRICS_ENABLED defaults to false."""
        m = _reload_metrics({"METRICS_ENABLED": "false"})
        assert m.METRICS_ENABLED is False

    def test_metrics_enabled_via_env(self):
        """METRICS_ENABLED=true enables metrics."""
        m = _reload_metrics({"METRICS_ENABLED": "true"})
        assert m.METRICS_ENABLED is True

    def test_enabled_reload_does_not_collide(self):
        """Each load owns its registry, so reloading twice is safe."""
        _reload_metrics({"METRICS_ENABLED": "true"})
        m = _reload_metrics({"METRICS_ENABLED": "true"})
        m.track_ai_call("openai", "gpt-4o-mini", outcome="success", cost=0.001, duration=0.3)
        output = m.generate_latest().decode()
        assert 'ai_requests_total{model="gpt-4o-mini",outcome="success",provider="openai"} 1.0' in output

    def test_noop_metric_labels(self):
        """NoOp metrics should silently accept any labels."""
        m = _reload_metrics({"METRICS_ENABLED": "false"})
        # Should not raise
        m.http_requests_total.labels(method="GET", path="/test", status="200").inc()
        m.http_request_duration.labels(method="GET", path="/test").observe(0.5)
        m.ai_requests_total.labels(provider="anthropic", model="test", outcome="success").inc()
        m.ai_cost_total.labels(provider="anthropic").inc(0.01)
        m.ai_budget_utilization.labels(period="daily").set(0.5)
        m.cache_operations.labels(operation="get", result="hit").inc()

    def test_track_request(self):
        """track_request increments internal counters."""
        m = _reload_metrics({"METRICS_ENABLED": "false"})
        initial = m._internal_counters["http_requests"]
        m.track_request("POST", "/api/ai/route", 200, 0.05)
        assert m._internal_counters["http_requests"] == initial + 1

    def test_track_ai_call(self):
        """track_ai_call increments internal counters and accumulates cost."""
        m = _reload_metrics({"METRICS_ENABLED": "false"})
        initial_count = m._internal_counters["ai_requests"]
        initial_cost = m._internal_counters["ai_cost_usd"]
        m.track_ai_call("anthropic", "claude-opus-4.5", cost=0.015, duration=2.1)
        assert m._internal_counters["ai_requests"] == initial_count + 1
        assert m._internal_counters["ai_cost_usd"] == pytest.approx(initial_cost + 0.015)

    def test_track_ai_call_failure(self):
        """Non-success outcomes count as failures."""
        m = _reload_metrics({"METRICS_ENABLED": "false"})
        m.track_ai_call("openai", "gpt-4o", outcome="rate_limited")
        assert m._internal_counters["ai_failures"] == 1

    def test_track_fallback(self):
        m = _reload_metrics({"METRICS_ENABLED": "false"})
        m.track_fallback("gemini")
        assert m.get_metrics_summary()["ai_fallbacks_total"] == 1

    def test_track_cache_hit(self):
        """track_cache increments hit counter."""
        m = _reload_metrics({"METRICS_ENABLED": "false"})
        initial = m._internal_counters["cache_hits"]
        m.track_cache("get", hit=True)
        assert m._internal_counters["cache_hits"] == initial + 1

    def test_track_cache_miss(self):
        """track_cache increments miss counter."""
        m = _reload_metrics({"METRICS_ENABLED": "false"})
        initial = m._internal_counters["cache_misses"]
        m.track_cache("get", hit=False)
        assert m._internal_counters["cache_misses"] == initial + 1

    def test_get_metrics_summary(self):
        """get_metrics_summary returns expected structure."""
        m = _reload_metrics({"METRICS_ENABLED": "false"})
        summary = m.get_metrics_summary()
        for key in (
            "metrics_enabled", "uptime_seconds", "http_requests_total",
            "ai_requests_total", "ai_failures_total", "ai_fallbacks_total",
            "ai_cost_usd_total", "cache_hits", "cache_misses",
        ):
            assert key in summary
        assert summary["uptime_seconds"] >= 0


# ---------------------------------------------------------------------------
# MetricsMiddleware tests
# ---------------------------------------------------------------------------

class TestMetricsMiddleware:
    """Tests for middleware/metrics.py"""

    def test_path_label_uses_route_template(self):
        from middleware.metrics import MetricsMiddleware
        mw = MetricsMiddleware(app=MagicMock())
        request = MagicMock()
        request.scope = {"route": MagicMock(path="/api/ai/route")}
        assert mw._path_label(request) == "/api/ai/route"

    def test_path_label_unmatched(self):
        from middleware.metrics import MetricsMiddleware
        mw = MetricsMiddleware(app=MagicMock())
        request = MagicMock()
        request.scope = {}
        assert mw._path_label(request) == "unmatched"

    def test_skip_paths(self):
        """Health and metrics paths are excluded from tracking."""
        from middleware.metrics import MetricsMiddleware
        mw = MetricsMiddleware(app=MagicMock())
        assert "/health" in mw._SKIP_PATHS
        assert "/readiness" in mw._SKIP_PATHS
        assert "/metrics" in mw._SKIP_PATHS


# ---------------------------------------------------------------------------
# /metrics endpoint tests (via TestClient)
# ---------------------------------------------------------------------------

class TestMetricsEndpoint:
    """Tests for the /metrics endpoint in routers/health.py"""

    def _client(self):
        from fastapi import FastAPI
        from fastapi.testclient import TestClient
        from routers.health import router

        test_app = FastAPI()
        test_app.include_router(router)
        return TestClient(test_app)

    def test_metrics_endpoint_json_when_disabled(self):
        _reload_metrics({"METRICS_ENABLED": "false"})
        response = self._client().get("/metrics")
        assert response.status_code == 200
        data = response.json()
        assert data["metrics_enabled"] is False
        assert data["uptime_seconds"] >= 0

    def test_metrics_endpoint_prometheus_when_enabled(self):
        m = _reload_metrics({"METRICS_ENABLED": "true"})
        m.track_cache("get", hit=True)
        response = self._client().get("/metrics")
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert "cache_operations_total" in response.text
