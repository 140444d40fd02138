"""
Idea Engine - AI Router Data Types
==================================

Request/response shapes shared by the router, the model selector and the
provider adapters.
"""

import uuid
from dataclasses import dataclass, field, asdict
from enum import Enum, IntEnum
from typing import Optional, Dict, Any, List, Tuple

from constants import CHARS_PER_TOKEN, DEFAULT_MAX_TOKENS, DEFAULT_TEMPERATURE


class TaskType(str, Enum):
    """Task types for model routing."""
    BUSINESS_PLAN = "business_plan"            # Full business plan generation
    FINANCIAL_MODEL = "financial_model"        # Revenue/cost projections
    MARKET_ANALYSIS = "market_analysis"        # Market research write-ups
    SENTIMENT_ANALYSIS = "sentiment_analysis"  # Sentiment of scraped content
    MARKET_SIGNALS = "market_signals"          # Volatile market signal snapshots
    GENERAL = "general"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class CapabilityTier(IntEnum):
    """Ranked model classes used for budget-aware downgrading."""
    ECONOMY = 1
    STANDARD = 2
    PREMIUM = 3


@dataclass(frozen=True)
class AIRequest:
    """A single routed AI call. Immutable once issued."""
    task_type: TaskType
    prompt: str
    context: Optional[str] = None
    max_tokens: int = DEFAULT_MAX_TOKENS
    temperature: float = DEFAULT_TEMPERATURE
    priority: Priority = Priority.MEDIUM
    user_id: Optional[str] = None
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def __post_init__(self):
        if not self.prompt or not self.prompt.strip():
            raise ValueError("prompt is required")
        if self.max_tokens is None or self.max_tokens < 1:
            raise ValueError("max_tokens must be >= 1")
        # Accept plain strings from HTTP/JSON callers
        if not isinstance(self.task_type, TaskType):
            object.__setattr__(self, "task_type", TaskType(self.task_type))
        if not isinstance(self.priority, Priority):
            object.__setattr__(self, "priority", Priority(self.priority))

    @property
    def content_length(self) -> int:
        """Characters of prompt plus context."""
        return len(self.prompt) + len(self.context or "")

    @property
    def estimated_input_tokens(self) -> int:
        return -(-self.content_length // CHARS_PER_TOKEN)


@dataclass(frozen=True)
class ModelConfig:
    """Configuration for an AI model."""
    name: str                           # Model identifier
    provider: str                       # openai, anthropic, gemini
    input_cost_per_1m: float            # Cost per 1M input tokens
    output_cost_per_1m: float           # Cost per 1M output tokens
    max_tokens: int                     # Context window
    tier: CapabilityTier
    max_output_tokens: int = 4096
    best_for: Tuple[TaskType, ...] = ()
    api_model_id: Optional[str] = None  # Actual API model ID if different

    @property
    def cost_per_input_token(self) -> float:
        return self.input_cost_per_1m / 1_000_000

    @property
    def cost_per_output_token(self) -> float:
        return self.output_cost_per_1m / 1_000_000

    @property
    def blended_cost_per_1m(self) -> float:
        return (self.input_cost_per_1m + self.output_cost_per_1m) / 2

    @property
    def key(self) -> str:
        return f"{self.provider}:{self.name}"

    def cost_for(self, input_tokens: int, output_tokens: int) -> float:
        return (
            input_tokens * self.cost_per_input_token +
            output_tokens * self.cost_per_output_token
        )

    def fits(self, request: AIRequest) -> bool:
        """True when the estimated prompt plus requested output fit the window."""
        return request.estimated_input_tokens + request.max_tokens <= self.max_tokens


@dataclass(frozen=True)
class RateLimitHint:
    """Rate-limit signals an adapter parsed from its backend's response."""
    requests_remaining: Optional[int] = None
    tokens_remaining: Optional[int] = None
    reset_after_seconds: Optional[float] = None


@dataclass
class ProviderResult:
    """What an adapter returns from a successful generate() call."""
    content: str
    model: str
    input_tokens: int
    output_tokens: int
    cost: float
    latency_ms: int
    finish_reason: Optional[str] = None
    rate_limit: Optional[RateLimitHint] = None

    @property
    def tokens_used(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass
class RouteDecision:
    """Diagnostic view of how a request was (or would be) routed."""
    candidates: List[ModelConfig]
    reasoning: str
    chosen: Optional[ModelConfig] = None
    fallback_used: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "candidates": [m.key for m in self.candidates],
            "chosen": self.chosen.key if self.chosen else None,
            "fallback_used": self.fallback_used,
            "reasoning": self.reasoning,
        }


@dataclass
class RouterResponse:
    """Returned to every caller of AIRouter.route()."""
    content: str
    provider: str
    model: str
    tokens_used: int
    cost: float
    cached: bool
    latency_ms: int
    fallback_used: bool
    reasoning: str
    request_id: Optional[str] = None
    finish_reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RouterResponse":
        known = {f: data[f] for f in cls.__dataclass_fields__ if f in data}
        return cls(**known)
