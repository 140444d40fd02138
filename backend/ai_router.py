"""
Idea Engine - AI Router
=======================

Single entry point for every AI-agent call. Reconciles several rate-limited,
differently priced LLM backends behind one interface.

Request lifecycle:
- Cache check (fingerprint of task, normalized prompt/context, target tier)
- Budget Guard decides which capability tiers are allowed
- Model Selector orders provider+model candidates
- Each candidate in turn: reserve a rate-limit slot, budget pre-flight,
  provider call bounded by a timeout
- Transient failures (429, 5xx, timeout) advance to the next candidate;
  auth and bad-request failures stop immediately
- Success writes the cache, updates spend and rate state, records metrics
  and the usage ledger

Failover is immediate: a rate-limited provider is skipped, never waited on.
"""

import asyncio
import dataclasses
import logging
import time
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List, Callable

from ai_errors import (
    AIRouterException,
    AllProvidersExhaustedException,
    BudgetExceededException,
    CandidateFailure,
    DeadlineExceededException,
    ModelUnavailableException,
    ProviderException,
    ProviderServerException,
    RateLimitedException,
)
from ai_providers import BaseAIProvider, build_providers
from ai_types import AIRequest, CapabilityTier, ModelConfig, RouteDecision, RouterResponse, TaskType
from budget_guard import BudgetGuard
from cache import ResponseCache, fingerprint, get_cache_backend
from metrics import track_ai_call, track_budget, track_cache, track_fallback
from model_selector import MODEL_CATALOG, ModelSelector
from rate_limiter import RateLimitState
from router_settings import RouterSettings
from usage_ledger import UsageLedger
from constants import DEFAULT_PROVIDER_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)


class AIRouter:
    """
    Multi-provider AI router with budget, rate-limit and cache awareness.

    Usage:
        router = await build_ai_router(RouterSettings.from_env())
        response = await router.route(AIRequest(task_type="general", prompt="..."))
    """

    def __init__(
        self,
        providers: Dict[str, BaseAIProvider],
        budget_guard: Optional[BudgetGuard] = None,
        cache: Optional[ResponseCache] = None,
        selector: Optional[ModelSelector] = None,
        rate_limits: Optional[Dict[str, RateLimitState]] = None,
        provider_timeout: float = DEFAULT_PROVIDER_TIMEOUT_SECONDS,
        usage_ledger: Optional[UsageLedger] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if provider_timeout <= 0:
            raise ValueError("provider_timeout must be positive")
        self.providers = dict(providers)
        self.budget_guard = budget_guard or BudgetGuard()
        self.cache = cache or ResponseCache()
        self.selector = selector or ModelSelector(MODEL_CATALOG, available_providers=self.providers)
        self.rate_limits = rate_limits if rate_limits is not None else {
            name: RateLimitState(p.requests_per_minute, p.tokens_per_minute)
            for name, p in self.providers.items()
        }
        missing = set(self.providers) - set(self.rate_limits)
        if missing:
            raise ValueError(f"no rate limit state for providers: {sorted(missing)}")
        self.provider_timeout = provider_timeout
        self.usage_ledger = usage_ledger
        self._clock = clock

    # =========================================================================
    # ROUTING
    # =========================================================================

    async def route(self, request: AIRequest, deadline: Optional[float] = None) -> RouterResponse:
        """
        Route one request to the best available model.

        Args:
            request: The AI call to make
            deadline: Optional absolute time.monotonic() value after which
                no further provider is tried

        Returns:
            RouterResponse, from the cache or from exactly one provider

        Raises:
            BudgetExceededException: budget cap reached (non-critical request)
            AuthFailedException / BadRequestException: terminal provider error
            AllProvidersExhaustedException: every candidate failed or was skipped
            ModelUnavailableException: no catalog model can hold the request
            DeadlineExceededException: deadline passed before any answer
        """
        try:
            return await self._route(request, deadline)
        except AIRouterException as e:
            await self._ledger_error(request, e)
            raise

    async def _route(self, request: AIRequest, deadline: Optional[float]) -> RouterResponse:
        start = self._clock()
        key = fingerprint(request, self.selector.target_tier(request))

        # -- CacheCheck -------------------------------------------------------
        entry = await self.cache.get(key)
        if entry is not None:
            track_cache("get", hit=True)
            logger.debug("Cache hit for %s (%s)", request.request_id, request.task_type.value)
            response = dataclasses.replace(
                entry.response,
                cached=True,
                cost=0.0,
                latency_ms=int((self._clock() - start) * 1000),
                request_id=request.request_id,
                reasoning=f"cache hit ({entry.response.provider}:{entry.response.model})",
            )
            await self._ledger_success(request, response)
            return response
        track_cache("get", hit=False)
        logger.debug("Cache miss for %s (%s)", request.request_id, request.task_type.value)

        # -- Selecting --------------------------------------------------------
        decision = self.budget_guard.evaluate(request.priority)
        selection = self.selector.select(request, decision.allowed_tiers, headroom=self._headroom)
        candidates = selection.candidates
        if not candidates:
            self._raise_no_candidates(request, decision.allowed_tiers)

        # -- Invoking(i) ------------------------------------------------------
        failures: List[CandidateFailure] = []
        budget_skips = 0

        for i, model in enumerate(candidates):
            provider = self.providers[model.provider]
            limiter = self.rate_limits[model.provider]

            timeout = self._call_timeout(deadline)

            # Slot is taken atomically here so concurrent routes cannot overrun the window
            reserved = request.estimated_input_tokens
            if not limiter.try_acquire(reserved):
                wait = limiter.get_wait_time()
                logger.info(
                    "Skipping %s: rate limited locally (resets in %.1fs)", model.key, wait
                )
                failures.append(CandidateFailure(
                    model.provider, model.name, RateLimitedException.kind,
                    f"local window exhausted, resets in {wait:.1f}s",
                ))
                continue

            estimate = provider.estimate_cost(request, model)
            if not self.budget_guard.can_afford(estimate, request.priority):
                limiter.release(reserved)
                logger.info(
                    "Skipping %s: estimated $%.4f exceeds remaining budget", model.key, estimate
                )
                budget_skips += 1
                failures.append(CandidateFailure(
                    model.provider, model.name, "budget",
                    f"estimated ${estimate:.4f} exceeds remaining budget",
                ))
                continue

            call_start = self._clock()
            try:
                result = await asyncio.wait_for(provider.generate(request, model), timeout)
            except asyncio.TimeoutError:
                limiter.release(reserved)
                if timeout < self.provider_timeout:
                    # Timeout was capped by the caller's deadline
                    raise DeadlineExceededException(
                        f"deadline passed while waiting on {model.key}"
                    )
                error: ProviderException = ProviderServerException(
                    model.provider, f"timed out after {timeout:.1f}s"
                )
            except ProviderException as e:
                error = e
            except asyncio.CancelledError:
                limiter.release(reserved)
                raise
            else:
                return await self._complete(
                    request, key, model, result, i, failures, selection.reasoning,
                    decision.reason, start, reserved,
                )

            track_ai_call(
                model.provider, model.name, outcome=error.kind,
                duration=self._clock() - call_start,
            )
            if isinstance(error, RateLimitedException):
                limiter.mark_exhausted(error.retry_after)
            else:
                limiter.release(reserved)

            if not error.retryable:
                logger.warning(
                    "Terminal %s from %s for %s: %s",
                    error.kind, model.key, request.request_id, error.detail,
                )
                raise error

            logger.info("Candidate %s failed (%s), trying next", model.key, error.kind)
            failures.append(CandidateFailure(model.provider, model.name, error.kind, error.detail))

        # -- Fail -------------------------------------------------------------
        if budget_skips == len(candidates):
            raise BudgetExceededException(
                "No candidate fits the remaining budget",
                utilization=self.budget_guard.utilization(),
            )
        raise AllProvidersExhaustedException(failures)

    async def _complete(
        self,
        request: AIRequest,
        key: str,
        model: ModelConfig,
        result,
        index: int,
        failures: List[CandidateFailure],
        selection_reasoning: str,
        budget_reasoning: str,
        start: float,
        reserved_tokens: int = 0,
    ) -> RouterResponse:
        """Success: account for the call, cache it, and build the response."""
        self.budget_guard.record_spend(
            result.cost,
            provider=model.provider,
            model=model.name,
            task_type=request.task_type,
            tokens_used=result.tokens_used,
            latency_ms=result.latency_ms,
            user_id=request.user_id,
        )
        self.rate_limits[model.provider].record_usage(
            result.tokens_used, result.rate_limit, reserved_tokens=reserved_tokens
        )

        fallback_used = index > 0
        reasoning = f"{selection_reasoning}; {budget_reasoning}"
        if fallback_used:
            skipped = ", ".join(f"{f.provider}/{f.model} ({f.kind})" for f in failures)
            reasoning += f"; fell back to {model.key} after {skipped or 'earlier candidates'}"
            track_fallback(model.provider)

        response = RouterResponse(
            content=result.content,
            provider=model.provider,
            model=model.name,
            tokens_used=result.tokens_used,
            cost=result.cost,
            cached=False,
            latency_ms=int((self._clock() - start) * 1000),
            fallback_used=fallback_used,
            reasoning=reasoning,
            request_id=request.request_id,
            finish_reason=result.finish_reason,
        )

        await self.cache.put(key, response, self.cache.ttl_for(request.task_type))

        track_ai_call(
            model.provider, model.name, outcome="success",
            cost=result.cost, duration=result.latency_ms / 1000,
        )
        self._track_budget()
        await self._ledger_success(request, response)

        logger.info(
            "Routed %s (%s) -> %s: %d tokens, $%.6f, %dms%s",
            request.request_id, request.task_type.value, model.key,
            response.tokens_used, response.cost, response.latency_ms,
            " [fallback]" if fallback_used else "",
        )
        return response

    def _raise_no_candidates(self, request: AIRequest, allowed_tiers) -> None:
        if self.selector.select(request, CapabilityTier).candidates:
            raise BudgetExceededException(
                f"Budget restricts this request to {sorted(t.name for t in allowed_tiers)} "
                "and no model in those tiers can take it",
                utilization=self.budget_guard.utilization(),
            )
        raise ModelUnavailableException(
            f"No available model can hold ~{request.estimated_input_tokens} input tokens "
            f"plus {request.max_tokens} output tokens"
        )

    def _call_timeout(self, deadline: Optional[float]) -> float:
        if deadline is None:
            return self.provider_timeout
        remaining = deadline - self._clock()
        if remaining <= 0:
            raise DeadlineExceededException("deadline passed before the next provider call")
        return min(self.provider_timeout, remaining)

    def _headroom(self, provider: str) -> int:
        state = self.rate_limits.get(provider)
        return state.headroom() if state else 0

    def _track_budget(self) -> None:
        s = self.budget_guard.get_state()
        track_budget(s.daily_spend / s.daily_limit, s.monthly_spend / s.monthly_limit)

    # =========================================================================
    # LEDGER
    # =========================================================================

    async def _ledger_success(self, request: AIRequest, response: RouterResponse) -> None:
        if self.usage_ledger is not None:
            await self.usage_ledger.record_success(request, response)

    async def _ledger_error(self, request: AIRequest, error: Exception) -> None:
        if self.usage_ledger is not None:
            await self.usage_ledger.record_error(
                request, error, provider=getattr(error, "provider", None)
            )

    # =========================================================================
    # DIAGNOSTICS
    # =========================================================================

    def plan_route(self, request: AIRequest) -> RouteDecision:
        """Dry run: the candidates route() would try, without calling anyone."""
        decision = self.budget_guard.evaluate(request.priority)
        selection = self.selector.select(request, decision.allowed_tiers, headroom=self._headroom)
        chosen = None
        fallback_used = False
        for i, model in enumerate(selection.candidates):
            if not self.rate_limits[model.provider].is_rate_limited():
                chosen = model
                fallback_used = i > 0
                break
        return RouteDecision(
            candidates=selection.candidates,
            reasoning=f"{selection.reasoning}; {decision.reason}",
            chosen=chosen,
            fallback_used=fallback_used,
        )

    async def health_check_all(self) -> Dict[str, Dict[str, Any]]:
        """Probe every configured provider concurrently, each bounded by provider_timeout."""
        names = list(self.providers)
        results = await asyncio.gather(*(self._health_check(n) for n in names))
        return dict(zip(names, results))

    async def _health_check(self, name: str) -> Dict[str, Any]:
        provider = self.providers[name]
        try:
            return await asyncio.wait_for(provider.health_check(), self.provider_timeout)
        except asyncio.TimeoutError:
            logger.warning("Health check for %s timed out after %.1fs", name, self.provider_timeout)
            return {
                "provider": name,
                "status": "unhealthy",
                "latency_ms": int(self.provider_timeout * 1000),
                "model": provider.health_check_model,
                "error": "timed out",
            }

    def rate_limit_status(self) -> Dict[str, Dict[str, Any]]:
        return {name: state.snapshot() for name, state in self.rate_limits.items()}

    def budget_status(self) -> Dict[str, Any]:
        s = self.budget_guard.get_state()
        return {
            "daily_spend": round(s.daily_spend, 6),
            "monthly_spend": round(s.monthly_spend, 6),
            "daily_limit": s.daily_limit,
            "monthly_limit": s.monthly_limit,
            "utilization": round(self.budget_guard.utilization(), 4),
            "remaining": round(self.budget_guard.get_remaining_budget(), 6),
            "period_start": s.period_start.isoformat(),
            "cost_optimization": self.budget_guard.enable_cost_optimization,
        }

    async def invalidate_cache(self, task_type: Optional[TaskType] = None) -> int:
        return await self.cache.invalidate(task_type)

    async def close(self) -> None:
        await self.cache.close()
        if self.usage_ledger is not None:
            self.usage_ledger.close()


# =============================================================================
# CONSTRUCTION
# =============================================================================

def _seed_budget_from_ledger(guard: BudgetGuard, ledger: UsageLedger) -> None:
    now = datetime.now(timezone.utc)
    day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    month_start = day_start.replace(day=1)
    daily = ledger.spend_since(day_start)
    monthly = ledger.spend_since(month_start)
    guard.seed(daily_spend=daily, monthly_spend=monthly)
    logger.info("Budget seeded from ledger: today $%.4f, month $%.4f", daily, monthly)


async def build_ai_router(
    settings: RouterSettings,
    providers: Optional[Dict[str, BaseAIProvider]] = None,
) -> AIRouter:
    """Wire up a router from settings. Callers own the returned instance."""
    if providers is None:
        providers = build_providers(settings.api_keys)
    if not providers:
        logger.warning("No AI providers configured; every route() will fail")
    else:
        logger.info("AI providers configured: %s", ", ".join(sorted(providers)))

    budget_guard = BudgetGuard(
        daily_limit=settings.daily_budget_usd,
        monthly_limit=settings.monthly_budget_usd,
        enable_cost_optimization=settings.enable_cost_optimization,
    )

    ledger = None
    if settings.database_url:
        ledger = await asyncio.to_thread(UsageLedger, settings.database_url)
        await asyncio.to_thread(_seed_budget_from_ledger, budget_guard, ledger)

    cache = ResponseCache(
        await get_cache_backend(settings.redis_url),
        ttl_multiplier=settings.cache_ttl_multiplier,
    )

    return AIRouter(
        providers=providers,
        budget_guard=budget_guard,
        cache=cache,
        provider_timeout=settings.provider_timeout_seconds,
        usage_ledger=ledger,
    )
