"""
Idea Engine - Prometheus Metrics Module

Provides router metrics with two modes:
- Prometheus: histogram/counter/gauge metrics in a dedicated registry
- Disabled: zero-overhead no-op stubs

All metrics default to OFF (METRICS_ENABLED=false). Zero overhead when disabled.

Usage:
    from metrics import track_request, track_ai_call, track_cache
    track_request("POST", "/api/ai/route", 200, 0.045)
    track_ai_call("anthropic", "claude-opus-4.5", outcome="success", cost=0.012, duration=1.5)
    track_cache("get", hit=True)
"""

import os
import time
import logging
from typing import Dict, Any

from prometheus_client import (
    CollectorRegistry, Counter, Histogram, Gauge, CONTENT_TYPE_LATEST,
)
from prometheus_client import generate_latest as _generate_latest

logger = logging.getLogger(__name__)

METRICS_ENABLED = os.environ.get("METRICS_ENABLED", "false").lower() == "true"

# Module-owned registry so a reload never double-registers collectors
REGISTRY = CollectorRegistry()


class _NoOpMetric:
    """No-op metric that silently discards all operations."""

    def labels(self, *args, **kwargs):
        return self

    def inc(self, amount=1):
        pass

    def dec(self, amount=1):
        pass

    def observe(self, amount):
        pass

    def set(self, value):
        pass


if METRICS_ENABLED:
    logger.info("Prometheus metrics enabled")

    # HTTP metrics
    http_requests_total = Counter(
        "http_requests_total",
        "Total HTTP requests",
        ["method", "path", "status"],
        registry=REGISTRY,
    )
    http_request_duration = Histogram(
        "http_request_duration_seconds",
        "HTTP request duration in seconds",
        ["method", "path"],
        buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        registry=REGISTRY,
    )

    # AI metrics
    ai_requests_total = Counter(
        "ai_requests_total",
        "Total AI provider calls",
        ["provider", "model", "outcome"],
        registry=REGISTRY,
    )
    ai_cost_total = Counter(
        "ai_cost_dollars_total",
        "Total AI API cost in dollars",
        ["provider"],
        registry=REGISTRY,
    )
    ai_request_duration = Histogram(
        "ai_request_duration_seconds",
        "AI request duration in seconds",
        ["provider", "model"],
        buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
        registry=REGISTRY,
    )
    ai_fallbacks_total = Counter(
        "ai_fallbacks_total",
        "Requests answered by a fallback candidate",
        ["provider"],
        registry=REGISTRY,
    )
    ai_budget_utilization = Gauge(
        "ai_budget_utilization",
        "Fraction of the AI budget spent",
        ["period"],
        registry=REGISTRY,
    )

    # Cache metrics
    cache_operations = Counter(
        "cache_operations_total",
        "Cache operations",
        ["operation", "result"],
        registry=REGISTRY,
    )
else:
    http_requests_total = _NoOpMetric()
    http_request_duration = _NoOpMetric()
    ai_requests_total = _NoOpMetric()
    ai_cost_total = _NoOpMetric()
    ai_request_duration = _NoOpMetric()
    ai_fallbacks_total = _NoOpMetric()
    ai_budget_utilization = _NoOpMetric()
    cache_operations = _NoOpMetric()


def generate_latest() -> bytes:
    return _generate_latest(REGISTRY)


# --- Convenience functions ---

# In-memory counters for the JSON summary
_internal_counters: Dict[str, Any] = {
    "http_requests": 0,
    "ai_requests": 0,
    "ai_failures": 0,
    "ai_fallbacks": 0,
    "ai_cost_usd": 0.0,
    "cache_hits": 0,
    "cache_misses": 0,
    "started_at": time.time(),
}


def track_request(method: str, path: str, status: int, duration: float) -> None:
    """Track an HTTP request."""
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    http_request_duration.labels(method=method, path=path).observe(duration)
    _internal_counters["http_requests"] += 1


def track_ai_call(
    provider: str,
    model: str,
    outcome: str = "success",
    cost: float = 0.0,
    duration: float = 0.0,
) -> None:
    """Track one provider call. outcome is "success" or an error kind."""
    ai_requests_total.labels(provider=provider, model=model, outcome=outcome).inc()
    if cost > 0:
        ai_cost_total.labels(provider=provider).inc(cost)
    if duration > 0:
        ai_request_duration.labels(provider=provider, model=model).observe(duration)
    _internal_counters["ai_requests"] += 1
    if outcome != "success":
        _internal_counters["ai_failures"] += 1
    _internal_counters["ai_cost_usd"] += cost


def track_fallback(provider: str) -> None:
    ai_fallbacks_total.labels(provider=provider).inc()
    _internal_counters["ai_fallbacks"] += 1


def track_budget(daily_utilization: float, monthly_utilization: float) -> None:
    ai_budget_utilization.labels(period="daily").set(daily_utilization)
    ai_budget_utilization.labels(period="monthly").set(monthly_utilization)


def track_cache(operation: str, hit: bool = True) -> None:
    """Track a cache operation."""
    cache_operations.labels(
        operation=operation, result="hit" if hit else "miss"
    ).inc()
    if hit:
        _internal_counters["cache_hits"] += 1
    else:
        _internal_counters["cache_misses"] += 1


def get_metrics_summary() -> Dict[str, Any]:
    """Return a JSON summary of metrics (served when Prometheus output is off)."""
    uptime = time.time() - _internal_counters["started_at"]
    return {
        "metrics_enabled": METRICS_ENABLED,
        "uptime_seconds": round(uptime, 1),
        "http_requests_total": _internal_counters["http_requests"],
        "ai_requests_total": _internal_counters["ai_requests"],
        "ai_failures_total": _internal_counters["ai_failures"],
        "ai_fallbacks_total": _internal_counters["ai_fallbacks"],
        "ai_cost_usd_total": round(_internal_counters["ai_cost_usd"], 6),
        "cache_hits": _internal_counters["cache_hits"],
        "cache_misses": _internal_counters["cache_misses"],
    }


__all__ = [
    "CONTENT_TYPE_LATEST",
    "METRICS_ENABLED",
    "generate_latest",
    "get_metrics_summary",
    "track_ai_call",
    "track_budget",
    "track_cache",
    "track_fallback",
    "track_request",
]
