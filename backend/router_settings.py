"""
Idea Engine - AI Router Settings

Environment is read once, at startup, into an immutable RouterSettings.
Nothing downstream calls os.getenv for router behavior.

Environment variables:
    ENVIRONMENT                  development | staging | production
    REDIS_URL / REDIS_ENABLED    response cache backend
    DATABASE_URL                 usage ledger (disabled when unset)
    ENABLE_COST_OPTIMIZATION     premium downgrade at 80% budget (default true)
    AI_DAILY_BUDGET_USD          default 50
    AI_MONTHLY_BUDGET_USD        default 1000
    AI_PROVIDER_TIMEOUT_SECONDS  default 30
    CACHE_TTL_MULTIPLIER         default 1.0
    OPENAI_API_KEY, ANTHROPIC_API_KEY, GOOGLE_AI_API_KEY
"""

import os
import logging
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional

from constants import DEFAULT_PROVIDER_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)

_API_KEY_ENV = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "gemini": "GOOGLE_AI_API_KEY",
}


def _env_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    value = env.get(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    value = env.get(name)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {value!r}")


@dataclass(frozen=True)
class RouterSettings:
    environment: str = "development"
    redis_url: Optional[str] = None
    database_url: Optional[str] = None
    enable_cost_optimization: bool = True
    daily_budget_usd: float = 50.0
    monthly_budget_usd: float = 1000.0
    provider_timeout_seconds: float = DEFAULT_PROVIDER_TIMEOUT_SECONDS
    cache_ttl_multiplier: float = 1.0
    api_keys: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        if self.daily_budget_usd <= 0 or self.monthly_budget_usd <= 0:
            raise ValueError("AI budgets must be positive")
        if self.provider_timeout_seconds <= 0:
            raise ValueError("AI_PROVIDER_TIMEOUT_SECONDS must be positive")
        if self.cache_ttl_multiplier <= 0:
            raise ValueError("CACHE_TTL_MULTIPLIER must be positive")

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "RouterSettings":
        env = os.environ if env is None else env

        redis_url = env.get("REDIS_URL") or None
        if redis_url and not _env_bool(env, "REDIS_ENABLED", True):
            logger.info("REDIS_ENABLED=false, ignoring REDIS_URL")
            redis_url = None

        api_keys = {name: env[var] for name, var in _API_KEY_ENV.items() if env.get(var)}

        return cls(
            environment=env.get("ENVIRONMENT", "development"),
            redis_url=redis_url,
            database_url=env.get("DATABASE_URL") or None,
            enable_cost_optimization=_env_bool(env, "ENABLE_COST_OPTIMIZATION", True),
            daily_budget_usd=_env_float(env, "AI_DAILY_BUDGET_USD", 50.0),
            monthly_budget_usd=_env_float(env, "AI_MONTHLY_BUDGET_USD", 1000.0),
            provider_timeout_seconds=_env_float(
                env, "AI_PROVIDER_TIMEOUT_SECONDS", DEFAULT_PROVIDER_TIMEOUT_SECONDS
            ),
            cache_ttl_multiplier=_env_float(env, "CACHE_TTL_MULTIPLIER", 1.0),
            api_keys=api_keys,
        )

    def __repr__(self) -> str:
        # Never print keys
        return (
            f"RouterSettings(environment={self.environment!r}, "
            f"redis={'on' if self.redis_url else 'off'}, "
            f"ledger={'on' if self.database_url else 'off'}, "
            f"daily_budget_usd={self.daily_budget_usd}, "
            f"monthly_budget_usd={self.monthly_budget_usd}, "
            f"providers={sorted(self.api_keys)})"
        )
