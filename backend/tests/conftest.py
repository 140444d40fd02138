"""
Idea Engine - Test Configuration and Fixtures

Puts backend/ on sys.path and provides a scripted fake provider, a
controllable clock, and a router factory so the dispatcher can be tested
without any network access.
"""
import os
import sys
from datetime import datetime, timezone
from typing import Dict, List, Optional

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Set test environment
os.environ['TESTING'] = 'true'
os.environ.setdefault('METRICS_ENABLED', 'false')

from ai_providers.base_provider import BaseAIProvider, Completion  # noqa: E402
from ai_router import AIRouter  # noqa: E402
from budget_guard import BudgetGuard  # noqa: E402
from cache import InMemoryCache, ResponseCache  # noqa: E402
from rate_limiter import RateLimitState  # noqa: E402


# ==============================================================================
# Clocks
# ==============================================================================

class FakeClock:
    """Manually advanced epoch-seconds clock."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeDateClock:
    """Manually set UTC datetime clock for BudgetGuard."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def date_clock():
    return FakeDateClock()


# ==============================================================================
# Fake provider
# ==============================================================================

class ScriptedProvider(BaseAIProvider):
    """
    Provider whose _complete() replays a script.

    Each script item is either a Completion to return or an exception
    to raise. When the script runs out the default completion is returned.
    """

    env_key_name = "FAKE_PROVIDER_API_KEY"
    requests_per_minute = 100
    tokens_per_minute = 100_000
    health_check_model = "fake-health"

    def __init__(self, name: str, script: Optional[List] = None):
        super().__init__(api_key="test-key")
        self.provider_name = name
        self.script = list(script or [])
        self.calls: List[Dict] = []

    async def _complete(self, model_id, prompt, max_tokens, temperature) -> Completion:
        self.calls.append({
            "model_id": model_id,
            "prompt": prompt,
            "max_tokens": max_tokens,
            "temperature": temperature,
        })
        if self.script:
            item = self.script.pop(0)
            if isinstance(item, Exception):
                raise item
            return item
        return Completion(
            content=f"{self.provider_name} answer",
            input_tokens=100,
            output_tokens=50,
            finish_reason="stop",
        )


@pytest.fixture
def make_provider():
    return ScriptedProvider


@pytest.fixture
def providers():
    return {
        "openai": ScriptedProvider("openai"),
        "anthropic": ScriptedProvider("anthropic"),
        "gemini": ScriptedProvider("gemini"),
    }


@pytest.fixture
def make_router(clock, date_clock):
    """Build an AIRouter over fake providers with injectable clocks."""

    def _make(
        providers: Dict[str, BaseAIProvider],
        daily_limit: float = 50.0,
        monthly_limit: float = 1000.0,
        enable_cost_optimization: bool = True,
        provider_timeout: float = 5.0,
        usage_ledger=None,
    ) -> AIRouter:
        return AIRouter(
            providers=providers,
            budget_guard=BudgetGuard(
                daily_limit=daily_limit,
                monthly_limit=monthly_limit,
                enable_cost_optimization=enable_cost_optimization,
                clock=date_clock,
            ),
            cache=ResponseCache(InMemoryCache(clock=clock), clock=clock),
            rate_limits={
                name: RateLimitState(p.requests_per_minute, p.tokens_per_minute, clock=clock)
                for name, p in providers.items()
            },
            provider_timeout=provider_timeout,
            usage_ledger=usage_ledger,
        )

    return _make
