"""
Idea Engine - Health & Version Router

Endpoints:
- GET /api/version - Application version info
- GET /health - Liveness probe
- GET /readiness - Readiness probe (router built, at least one provider, ledger reachable)
- GET /metrics - Prometheus text, or a JSON summary when metrics are disabled
"""

import asyncio
import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from starlette.responses import Response

from constants import __version__

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])


@router.get("/api/version")
async def get_version():
    """Return application version information."""
    return {"version": __version__, "name": "Idea Engine AI Router"}


@router.get("/health")
async def health_check():
    """Liveness probe."""
    return {"status": "healthy", "version": __version__}


def _ping_ledger(ledger) -> None:
    with ledger.engine.connect() as conn:
        conn.execute(text("SELECT 1"))


@router.get("/readiness")
async def readiness_check(request: Request):
    """Readiness probe - checks router wiring and the usage ledger."""
    ai_router = getattr(request.app.state, "ai_router", None)
    checks = {
        "ai_router": ai_router is not None,
        "providers": bool(ai_router and ai_router.providers),
    }

    ledger = ai_router.usage_ledger if ai_router else None
    if ledger is not None:
        try:
            await asyncio.to_thread(_ping_ledger, ledger)
            checks["usage_ledger"] = True
        except SQLAlchemyError as e:
            logger.warning("Usage ledger not reachable: %s", e)
            checks["usage_ledger"] = False

    # Ledger is optional: without it we are degraded, not down
    critical_ok = checks["ai_router"] and checks["providers"]
    all_ok = all(checks.values())

    status_code = 200 if critical_ok else 503
    if all_ok:
        status_text = "ready"
    elif critical_ok:
        status_text = "degraded"
    else:
        status_text = "unhealthy"

    return JSONResponse(
        status_code=status_code,
        content={
            "status": status_text,
            "version": __version__,
            "checks": checks,
        }
    )


@router.get("/metrics")
async def metrics_endpoint():
    """Prometheus metrics endpoint.

    Returns Prometheus text format when METRICS_ENABLED=true, otherwise
    returns a JSON summary.
    """
    from metrics import (
        METRICS_ENABLED, generate_latest, CONTENT_TYPE_LATEST, get_metrics_summary,
    )

    if METRICS_ENABLED:
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return get_metrics_summary()
