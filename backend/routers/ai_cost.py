"""
Idea Engine - AI Cost & Budget Router

Endpoints:
- GET  /api/ai/budget          - Current spend, limits and utilization
- GET  /api/ai/cost/summary    - AI cost summary (total + by provider/model/task)
- GET  /api/ai/cost/daily      - Daily cost breakdown from the usage ledger
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, HTTPException, Depends, Query

from ai_router import AIRouter
from dependencies import get_ai_router

logger = logging.getLogger(__name__)

router = APIRouter(tags=["AI Cost & Budget"])


@router.get("/api/ai/budget")
async def ai_budget(ai_router: AIRouter = Depends(get_ai_router)):
    """Budget state as the Budget Guard sees it right now."""
    return ai_router.budget_status()


@router.get("/api/ai/cost/summary")
async def ai_cost_summary(
    hours: Optional[int] = Query(None, ge=1, le=24 * 31),
    ai_router: AIRouter = Depends(get_ai_router),
):
    """Get AI cost summary with totals by provider/model/task."""
    since = datetime.now(timezone.utc) - timedelta(hours=hours) if hours else None
    summary = ai_router.budget_guard.get_usage_summary(since=since)
    summary["remaining_budget"] = round(ai_router.budget_guard.get_remaining_budget(), 6)
    summary["period"] = f"last_{hours}h" if hours else "since_start"
    return summary


@router.get("/api/ai/cost/daily")
async def ai_cost_daily(
    days: int = Query(30, ge=1, le=366),
    ai_router: AIRouter = Depends(get_ai_router),
):
    """Get daily AI cost breakdown. Requires the usage ledger (DATABASE_URL)."""
    if ai_router.usage_ledger is None:
        raise HTTPException(status_code=404, detail="Usage ledger not configured")
    daily = await asyncio.to_thread(ai_router.usage_ledger.daily_costs, days)
    return {
        "days": days,
        "total_cost_usd": round(sum(d["cost_usd"] for d in daily), 6),
        "daily": daily,
    }
