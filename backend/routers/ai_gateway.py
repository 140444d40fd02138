"""
Idea Engine - AI Gateway Router

Endpoints:
- POST /api/ai/route                  - Route one AI request, return the response
- POST /api/ai/route/plan             - Dry run: candidate chain without calling providers
- GET  /api/ai/providers/health       - Minimal live call against every provider
- GET  /api/ai/providers/rate-limits  - Per-provider rate-limit window state
- GET  /api/ai/providers/status       - Which providers are configured
- POST /api/ai/cache/invalidate       - Drop cached responses (optionally per task)
"""

import logging
import time
from typing import Optional

from fastapi import APIRouter, HTTPException, Depends
from pydantic import BaseModel, Field

from ai_errors import (
    AIRouterException,
    AllProvidersExhaustedException,
    AuthFailedException,
    BadRequestException,
    BudgetExceededException,
    DeadlineExceededException,
    ModelUnavailableException,
    RateLimitedException,
)
from ai_providers import get_all_provider_status
from ai_router import AIRouter
from ai_types import AIRequest, Priority, TaskType
from constants import DEFAULT_MAX_TOKENS, DEFAULT_TEMPERATURE
from dependencies import get_ai_router

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/ai", tags=["AI Gateway"])


# =============================================================================
# Pydantic Models
# =============================================================================

class RouteRequestBody(BaseModel):
    task_type: TaskType
    prompt: str = Field(..., min_length=1)
    context: Optional[str] = None
    max_tokens: int = Field(DEFAULT_MAX_TOKENS, ge=1)
    temperature: float = Field(DEFAULT_TEMPERATURE, ge=0.0, le=2.0)
    priority: Priority = Priority.MEDIUM
    user_id: Optional[str] = None
    timeout_seconds: Optional[float] = Field(None, gt=0)

    def to_ai_request(self) -> AIRequest:
        return AIRequest(
            task_type=self.task_type,
            prompt=self.prompt,
            context=self.context,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            priority=self.priority,
            user_id=self.user_id,
        )


class CacheInvalidateBody(BaseModel):
    task_type: Optional[TaskType] = None


# =============================================================================
# Error mapping
# =============================================================================

_STATUS_FOR = [
    (BudgetExceededException, 402),
    (AuthFailedException, 502),
    (BadRequestException, 400),
    (RateLimitedException, 503),
    (AllProvidersExhaustedException, 503),
    (ModelUnavailableException, 422),
    (DeadlineExceededException, 504),
]


def http_error_for(error: AIRouterException) -> HTTPException:
    status_code = next((code for cls, code in _STATUS_FOR if isinstance(error, cls)), 500)
    detail = {"error": type(error).__name__, "message": str(error)}
    if isinstance(error, AllProvidersExhaustedException):
        detail["failures"] = [
            {"provider": f.provider, "model": f.model, "kind": f.kind, "detail": f.detail}
            for f in error.failures
        ]
    if isinstance(error, BudgetExceededException):
        detail["utilization"] = round(error.utilization, 4)
    return HTTPException(status_code=status_code, detail=detail)


def _build_request(body: RouteRequestBody) -> AIRequest:
    try:
        return body.to_ai_request()
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))


# =============================================================================
# Routing Endpoints
# =============================================================================

@router.post("/route")
async def route_ai_request(
    body: RouteRequestBody,
    ai_router: AIRouter = Depends(get_ai_router),
):
    """Route one request through cache, budget, selection and fallback."""
    request = _build_request(body)
    deadline = time.monotonic() + body.timeout_seconds if body.timeout_seconds else None
    try:
        response = await ai_router.route(request, deadline=deadline)
    except AIRouterException as e:
        logger.warning("AI route %s failed: %s", request.request_id, e)
        raise http_error_for(e)
    return response.to_dict()


@router.post("/route/plan")
async def plan_ai_request(
    body: RouteRequestBody,
    ai_router: AIRouter = Depends(get_ai_router),
):
    """Show the candidate chain route() would try for this request."""
    request = _build_request(body)
    try:
        decision = ai_router.plan_route(request)
    except AIRouterException as e:
        raise http_error_for(e)
    return decision.to_dict()


# =============================================================================
# Provider Endpoints
# =============================================================================

@router.get("/providers/health")
async def providers_health(ai_router: AIRouter = Depends(get_ai_router)):
    """Health check of every configured provider."""
    results = await ai_router.health_check_all()
    healthy = sum(1 for r in results.values() if r.get("status") == "healthy")
    return {
        "status": "healthy" if results and healthy == len(results) else (
            "degraded" if healthy else "unhealthy"
        ),
        "providers": results,
    }


@router.get("/providers/rate-limits")
async def providers_rate_limits(ai_router: AIRouter = Depends(get_ai_router)):
    return ai_router.rate_limit_status()


@router.get("/providers/status")
async def providers_status():
    """Configuration status of every known provider (keys are never returned)."""
    return {"providers": get_all_provider_status()}


@router.post("/cache/invalidate")
async def invalidate_cache(
    body: CacheInvalidateBody,
    ai_router: AIRouter = Depends(get_ai_router),
):
    removed = await ai_router.invalidate_cache(body.task_type)
    return {"removed": removed, "task_type": body.task_type.value if body.task_type else None}
