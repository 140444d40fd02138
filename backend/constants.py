"""
Idea Engine - Shared Constants

Centralizes version string, routing thresholds and cache TTLs used across
the AI router modules.
"""

__version__ = "1.4.0"

# =============================================================================
# TOKEN ESTIMATION
# =============================================================================

# Rough estimation: 4 characters per token on average
CHARS_PER_TOKEN = 4

DEFAULT_MAX_TOKENS = 4000
DEFAULT_TEMPERATURE = 0.7

# =============================================================================
# MODEL SELECTION
# =============================================================================

# 100K+ characters of prompt + context is treated as a long-context request
LONG_CONTEXT_CHARS = 100_000

# Minimum context window (tokens) a model needs to take a long-context request
LONG_CONTEXT_WINDOW_TOKENS = 200_000

# Task types whose output quality outweighs cost
QUALITY_SENSITIVE_TASKS = frozenset({"business_plan", "financial_model"})

# =============================================================================
# BUDGET POLICY
# =============================================================================

BUDGET_DOWNGRADE_THRESHOLD = 0.8
BUDGET_HARD_LIMIT = 1.0

# =============================================================================
# RESPONSE CACHE TTLs (seconds)
# =============================================================================

DEFAULT_CACHE_TTL = 3600

TASK_CACHE_TTL = {
    "business_plan": 24 * 3600,      # stable and expensive to regenerate
    "financial_model": 12 * 3600,
    "market_analysis": 3600,         # market data changes frequently
    "general": DEFAULT_CACHE_TTL,
    "sentiment_analysis": 30 * 60,   # time-sensitive
    "market_signals": 15 * 60,       # volatile snapshots
}

CACHE_KEY_PREFIX = "ai_cache:"

# =============================================================================
# PROVIDER CALLS
# =============================================================================

DEFAULT_PROVIDER_TIMEOUT_SECONDS = 30.0
RATE_LIMIT_WINDOW_SECONDS = 60.0
HEALTH_CHECK_PROMPT = "Health check"
HEALTH_CHECK_MAX_TOKENS = 10
