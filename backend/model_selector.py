"""
Idea Engine - Model Selector
============================

Maps (task type, content size, priority, budget-allowed tiers) to an ordered
fallback chain of provider+model candidates.

Model Strategy:
- Long context (100K+ chars): only 200K+ context models, highest tier first
- High/critical priority or business plans/financial models: highest tier
- Everything else: cheapest tier whose models can hold the request
- Chain: primary pick, same-tier alternates from other providers, then the
  next lower tier as fallback
"""

import logging
from dataclasses import dataclass
from typing import Optional, Dict, List, Iterable, Callable, Sequence, Set

from ai_types import AIRequest, CapabilityTier, ModelConfig, Priority, TaskType
from constants import (
    LONG_CONTEXT_CHARS,
    LONG_CONTEXT_WINDOW_TOKENS,
    QUALITY_SENSITIVE_TASKS,
)

logger = logging.getLogger(__name__)


# =============================================================================
# MODEL CATALOG
# =============================================================================

MODEL_CATALOG: List[ModelConfig] = [
    # Premium: business plans, financial models, long context
    ModelConfig(
        name="claude-opus-4.5",
        provider="anthropic",
        input_cost_per_1m=15.00,
        output_cost_per_1m=75.00,
        max_tokens=200_000,
        max_output_tokens=8192,
        tier=CapabilityTier.PREMIUM,
        best_for=(TaskType.BUSINESS_PLAN, TaskType.FINANCIAL_MODEL),
        api_model_id="claude-opus-4-5-20251101",
    ),
    ModelConfig(
        name="gpt-4o",
        provider="openai",
        input_cost_per_1m=2.50,
        output_cost_per_1m=10.00,
        max_tokens=128_000,
        max_output_tokens=16_384,
        tier=CapabilityTier.PREMIUM,
        best_for=(TaskType.SENTIMENT_ANALYSIS,),
        api_model_id="gpt-4o",
    ),

    # Standard: balanced general-purpose and market research
    ModelConfig(
        name="claude-sonnet-4.5",
        provider="anthropic",
        input_cost_per_1m=3.00,
        output_cost_per_1m=15.00,
        max_tokens=200_000,
        max_output_tokens=8192,
        tier=CapabilityTier.STANDARD,
        best_for=(TaskType.BUSINESS_PLAN, TaskType.GENERAL),
        api_model_id="claude-sonnet-4-5-20250929",
    ),
    ModelConfig(
        name="gemini-2.5-pro",
        provider="gemini",
        input_cost_per_1m=1.25,
        output_cost_per_1m=10.00,
        max_tokens=1_000_000,
        max_output_tokens=8192,
        tier=CapabilityTier.STANDARD,
        best_for=(TaskType.MARKET_ANALYSIS, TaskType.MARKET_SIGNALS),
        api_model_id="gemini-2.5-pro",
    ),

    # Economy: sentiment, signals, bulk general work
    ModelConfig(
        name="claude-haiku-4.5",
        provider="anthropic",
        input_cost_per_1m=1.00,
        output_cost_per_1m=5.00,
        max_tokens=200_000,
        max_output_tokens=8192,
        tier=CapabilityTier.ECONOMY,
        best_for=(TaskType.SENTIMENT_ANALYSIS,),
        api_model_id="claude-haiku-4-5-20251001",
    ),
    ModelConfig(
        name="gpt-4o-mini",
        provider="openai",
        input_cost_per_1m=0.15,
        output_cost_per_1m=0.60,
        max_tokens=128_000,
        max_output_tokens=16_384,
        tier=CapabilityTier.ECONOMY,
        best_for=(TaskType.GENERAL,),
        api_model_id="gpt-4o-mini",
    ),
    ModelConfig(
        name="gemini-2.5-flash",
        provider="gemini",
        input_cost_per_1m=0.30,
        output_cost_per_1m=2.50,
        max_tokens=1_000_000,
        max_output_tokens=8192,
        tier=CapabilityTier.ECONOMY,
        best_for=(TaskType.MARKET_SIGNALS, TaskType.MARKET_ANALYSIS),
        api_model_id="gemini-2.5-flash",
    ),
]


@dataclass
class Selection:
    candidates: List[ModelConfig]
    reasoning: str


class ModelSelector:
    """
    Rank catalog models for a request.

    Usage:
        selector = ModelSelector(MODEL_CATALOG, available_providers={"openai", "anthropic"})
        selection = selector.select(request, allowed_tiers, headroom=lambda p: 100)
    """

    def __init__(
        self,
        catalog: Sequence[ModelConfig] = MODEL_CATALOG,
        available_providers: Optional[Iterable[str]] = None,
    ):
        providers: Optional[Set[str]] = set(available_providers) if available_providers is not None else None
        self.catalog = [
            m for m in catalog if providers is None or m.provider in providers
        ]

    @staticmethod
    def is_long_context(request: AIRequest) -> bool:
        return request.content_length > LONG_CONTEXT_CHARS

    @staticmethod
    def is_quality_sensitive(request: AIRequest) -> bool:
        return (
            request.priority in (Priority.HIGH, Priority.CRITICAL)
            or request.task_type.value in QUALITY_SENSITIVE_TASKS
        )

    def _eligible(self, request: AIRequest, tiers: Iterable[CapabilityTier]) -> List[ModelConfig]:
        tiers = set(tiers)
        models = [m for m in self.catalog if m.tier in tiers and m.fits(request)]
        if self.is_long_context(request):
            models = [m for m in models if m.max_tokens >= LONG_CONTEXT_WINDOW_TOKENS]
        return models

    def target_tier(self, request: AIRequest) -> CapabilityTier:
        """Tier the policy aims for with no budget restriction (used in cache keys)."""
        eligible = self._eligible(request, CapabilityTier)
        if not eligible:
            return CapabilityTier.PREMIUM
        if self.is_long_context(request) or self.is_quality_sensitive(request):
            return max(m.tier for m in eligible)
        return min(m.tier for m in eligible)

    def select(
        self,
        request: AIRequest,
        allowed_tiers: Iterable[CapabilityTier],
        headroom: Callable[[str], int] = lambda provider: 0,
    ) -> Selection:
        """Produce the ordered candidate list. Empty when nothing fits."""
        eligible = self._eligible(request, allowed_tiers)
        if not eligible:
            return Selection([], "no allowed model can hold this request")

        tiers = sorted({m.tier for m in eligible})
        if self.is_long_context(request):
            primary = tiers[-1]
            reasoning = (
                f"long context ({request.content_length} chars), "
                f"restricted to {LONG_CONTEXT_WINDOW_TOKENS // 1000}K+ context models"
            )
        elif self.is_quality_sensitive(request):
            primary = tiers[-1]
            reasoning = (
                f"{request.priority.value} priority {request.task_type.value}, "
                "using highest available tier"
            )
        else:
            primary = tiers[0]
            reasoning = "standard request, using lowest-cost tier that fits"

        lower = [t for t in tiers if t < primary]
        chain = self._rank(request, [m for m in eligible if m.tier == primary], headroom)
        if lower:
            chain += self._rank(request, [m for m in eligible if m.tier == lower[-1]], headroom)
            reasoning += f"; {lower[-1].name.lower()} tier as fallback"

        logger.debug(
            "Selected %s for %s: %s", [m.key for m in chain], request.request_id, reasoning
        )
        return Selection(chain, f"{primary.name.lower()} tier: {reasoning}")

    @staticmethod
    def _rank(
        request: AIRequest,
        models: List[ModelConfig],
        headroom: Callable[[str], int],
    ) -> List[ModelConfig]:
        # Task affinity, then blended price; quota headroom breaks remaining ties
        return sorted(
            models,
            key=lambda m: (
                request.task_type not in m.best_for,
                m.blended_cost_per_1m,
                -headroom(m.provider),
            ),
        )

    def models_by_name(self) -> Dict[str, ModelConfig]:
        return {m.name: m for m in self.catalog}
