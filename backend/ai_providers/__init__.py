"""
LLM Provider Registry for Idea Engine.

One adapter per backend, each inheriting from BaseAIProvider. The router is
handed the instances explicitly; nothing here is a process-wide singleton.

Usage:
    from ai_providers import build_providers

    # Providers whose API keys are configured (explicit keys win over env)
    providers = build_providers({"openai": "sk-..."})
"""

from typing import Dict, List, Optional

from .base_provider import BaseAIProvider, Completion  # noqa: F401
from .openai_provider import OpenAIProvider  # noqa: F401
from .anthropic_provider import AnthropicProvider  # noqa: F401
from .gemini_provider import GeminiProvider  # noqa: F401

ALL_PROVIDERS = [
    OpenAIProvider,
    AnthropicProvider,
    GeminiProvider,
]

PROVIDER_REGISTRY = {P.provider_name: P for P in ALL_PROVIDERS}


def build_providers(api_keys: Optional[Dict[str, str]] = None) -> Dict[str, BaseAIProvider]:
    """
    Instantiate every provider that has an API key.

    Args:
        api_keys: provider name -> key. Missing entries fall back to the
            provider's environment variable.

    Returns:
        provider name -> adapter, for configured providers only.
    """
    api_keys = api_keys or {}
    providers: Dict[str, BaseAIProvider] = {}
    for name, ProviderClass in PROVIDER_REGISTRY.items():
        key = api_keys.get(name)
        if key or ProviderClass.is_configured():
            providers[name] = ProviderClass(api_key=key)
    return providers


def get_all_provider_status() -> List[dict]:
    """Configuration status of all providers, for the health endpoints."""
    return [
        {
            "name": P.provider_name,
            "env_key": P.env_key_name,
            "configured": P.is_configured(),
            "description": P.description,
            "requests_per_minute": P.requests_per_minute,
            "tokens_per_minute": P.tokens_per_minute,
        }
        for P in ALL_PROVIDERS
    ]
