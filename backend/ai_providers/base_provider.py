"""
Idea Engine - Base AI Provider Abstract Class

Abstract base for all LLM backend integrations. Each adapter inherits from
this class and implements _complete() against its vendor SDK.

All providers:
- Read their API key from the environment (or take it explicitly)
- Declare their per-minute request/token quota as class attributes
- Classify backend failures into the router's provider exceptions
- Translate backend rate-limit headers into a RateLimitHint
- Never touch shared budget state
"""

import logging
import time
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from email.utils import parsedate_to_datetime
from datetime import datetime, timezone
from typing import Optional, Dict, Any, Mapping

from ai_errors import (
    ProviderException,
    RateLimitedException,
    AuthFailedException,
    BadRequestException,
    ProviderServerException,
)
from ai_types import AIRequest, ModelConfig, ProviderResult, RateLimitHint
from constants import HEALTH_CHECK_PROMPT, HEALTH_CHECK_MAX_TOKENS

logger = logging.getLogger(__name__)


@dataclass
class Completion:
    """Raw outcome of one backend call, before pricing."""
    content: str
    input_tokens: int
    output_tokens: int
    finish_reason: Optional[str] = None
    rate_limit: Optional[RateLimitHint] = None


class BaseAIProvider(ABC):
    """
    Abstract base class for LLM provider adapters.

    Subclasses must define class attributes:
        provider_name: str - Registry key (e.g., "openai")
        env_key_name: str - Environment variable for API key
        requests_per_minute: int - Request quota per window
        tokens_per_minute: int - Token quota per window
        health_check_model: str - Cheapest model for health probes
        description: str - Brief description of the backend

    And implement:
        _complete() - Send one prompt and return a Completion
    """

    provider_name: str = ""
    env_key_name: str = ""
    requests_per_minute: int = 60
    tokens_per_minute: int = 100_000
    health_check_model: str = ""
    description: str = ""

    def __init__(self, api_key: Optional[str] = None):
        self.api_key = api_key or os.getenv(self.env_key_name, "")
        self._client = None

    @classmethod
    def is_configured(cls) -> bool:
        """Check if this provider's API key is set in the environment."""
        return bool(os.getenv(cls.env_key_name, ""))

    @abstractmethod
    async def _complete(
        self,
        model_id: str,
        prompt: str,
        max_tokens: int,
        temperature: float,
    ) -> Completion:
        """
        Call the backend once.

        Must raise a ProviderException subclass for every backend failure.
        """

    # -------------------------------------------------------------------------
    # Public contract
    # -------------------------------------------------------------------------

    async def generate(self, request: AIRequest, model: ModelConfig) -> ProviderResult:
        """Run a request against one model and price the reported usage."""
        start = time.monotonic()
        try:
            completion = await self._complete(
                model_id=model.api_model_id or model.name,
                prompt=self.build_prompt(request),
                max_tokens=min(request.max_tokens, model.max_output_tokens),
                temperature=request.temperature,
            )
            cost = model.cost_for(completion.input_tokens, completion.output_tokens)
        except ProviderException:
            raise
        except Exception as e:
            # Malformed responses and SDK surprises are server errors for routing
            logger.error(
                "Unexpected error from %s (%s): %s", self.provider_name, model.name, e,
                exc_info=True,
            )
            raise ProviderServerException(
                self.provider_name, f"unexpected error: {type(e).__name__}: {e}"
            ) from e
        latency_ms = int((time.monotonic() - start) * 1000)

        return ProviderResult(
            content=completion.content,
            model=model.name,
            input_tokens=completion.input_tokens,
            output_tokens=completion.output_tokens,
            cost=cost,
            latency_ms=latency_ms,
            finish_reason=completion.finish_reason,
            rate_limit=completion.rate_limit,
        )

    def estimate_cost(self, request: AIRequest, model: ModelConfig) -> float:
        """Pre-flight estimate: ~4 chars per input token, full max_tokens of output."""
        return model.cost_for(request.estimated_input_tokens, request.max_tokens)

    async def health_check(self) -> Dict[str, Any]:
        """Issue a minimal call and report status and latency."""
        start = time.monotonic()
        try:
            await self._complete(
                model_id=self.health_check_model,
                prompt=HEALTH_CHECK_PROMPT,
                max_tokens=HEALTH_CHECK_MAX_TOKENS,
                temperature=0.0,
            )
        except Exception as e:
            if not isinstance(e, ProviderException):
                logger.warning("Health check for %s failed unexpectedly: %s", self.provider_name, e)
            return {
                "provider": self.provider_name,
                "status": "unhealthy",
                "latency_ms": int((time.monotonic() - start) * 1000),
                "model": self.health_check_model,
                "error": str(e),
            }
        return {
            "provider": self.provider_name,
            "status": "healthy",
            "latency_ms": int((time.monotonic() - start) * 1000),
            "model": self.health_check_model,
        }

    # -------------------------------------------------------------------------
    # Helpers for subclasses
    # -------------------------------------------------------------------------

    @staticmethod
    def build_prompt(request: AIRequest) -> str:
        if request.context:
            return f"Context: {request.context}\n\nTask: {request.prompt}"
        return request.prompt

    @staticmethod
    def estimate_tokens(text: str) -> int:
        return -(-len(text or "") // 4)

    def error_for_status(
        self,
        status_code: Optional[int],
        message: str,
        retry_after: Optional[float] = None,
    ) -> ProviderException:
        """Map a backend HTTP status onto the router's error taxonomy."""
        if status_code == 429:
            return RateLimitedException(
                self.provider_name, f"rate limit exceeded: {message}", retry_after=retry_after
            )
        if status_code in (401, 403):
            return AuthFailedException(
                self.provider_name, f"authentication failed: {message}", status_code
            )
        if status_code is not None and 400 <= status_code < 500:
            return BadRequestException(
                self.provider_name, f"bad request: {message}", status_code
            )
        return ProviderServerException(
            self.provider_name, f"server error: {message}", status_code
        )

    @staticmethod
    def parse_retry_after(headers: Optional[Mapping[str, str]]) -> Optional[float]:
        """Seconds from a Retry-After header (delta-seconds or HTTP date)."""
        if not headers:
            return None
        value = headers.get("retry-after")
        if not value:
            return None
        try:
            return max(0.0, float(value))
        except ValueError:
            pass
        try:
            when = parsedate_to_datetime(value)
        except (TypeError, ValueError):
            return None
        return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())

    @staticmethod
    def parse_int_header(headers: Mapping[str, str], name: str) -> Optional[int]:
        value = headers.get(name)
        if value is None:
            return None
        try:
            return int(value)
        except ValueError:
            logger.debug("Ignoring non-integer %s header: %r", name, value)
            return None
