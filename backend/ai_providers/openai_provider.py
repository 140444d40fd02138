"""
Idea Engine - OpenAI Provider

Chat Completions adapter. OpenAI reports its remaining quota on every
response in x-ratelimit-* headers, which are forwarded as a RateLimitHint.

Rate Limit: 500 requests / 40K tokens per minute (default tier)
"""

import logging
import re
from typing import Optional, Mapping

import openai
from openai import AsyncOpenAI

from ai_errors import ProviderServerException
from ai_types import RateLimitHint
from .base_provider import BaseAIProvider, Completion

logger = logging.getLogger(__name__)

# "1s", "6m0s", "20ms", "1h2m3.5s"
_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_UNIT_SECONDS = {"h": 3600.0, "m": 60.0, "s": 1.0, "ms": 0.001}


def parse_reset_duration(value: Optional[str]) -> Optional[float]:
    """Convert OpenAI's reset duration strings to seconds."""
    if not value:
        return None
    parts = _DURATION_PART.findall(value)
    if not parts:
        return None
    return sum(float(amount) * _UNIT_SECONDS[unit] for amount, unit in parts)


class OpenAIProvider(BaseAIProvider):
    """OpenAI GPT models via the official async SDK."""

    provider_name = "openai"
    env_key_name = "OPENAI_API_KEY"
    requests_per_minute = 500
    tokens_per_minute = 40_000
    health_check_model = "gpt-4o-mini"
    description = "OpenAI GPT-4o family (Chat Completions API)"

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            # Retries are the router's job (fallback chain), not the SDK's
            self._client = AsyncOpenAI(api_key=self.api_key, max_retries=0)
        return self._client

    async def _complete(self, model_id, prompt, max_tokens, temperature) -> Completion:
        client = self._get_client()
        try:
            raw = await client.chat.completions.with_raw_response.create(
                model=model_id,
                messages=[{"role": "user", "content": prompt}],
                max_tokens=max_tokens,
                temperature=temperature,
            )
        except openai.APIStatusError as e:
            raise self.error_for_status(
                e.status_code, e.message, retry_after=self.parse_retry_after(e.response.headers)
            ) from e
        except openai.APIConnectionError as e:
            # Includes APITimeoutError
            raise ProviderServerException(self.provider_name, f"connection error: {e}") from e

        response = raw.parse()
        if not response.choices:
            raise ProviderServerException(self.provider_name, "response contained no choices")
        choice = response.choices[0]
        usage = response.usage
        text = choice.message.content or ""

        return Completion(
            content=text,
            input_tokens=usage.prompt_tokens if usage else self.estimate_tokens(prompt),
            output_tokens=usage.completion_tokens if usage else self.estimate_tokens(text),
            finish_reason=choice.finish_reason,
            rate_limit=self._rate_limit_hint(raw.headers),
        )

    def _rate_limit_hint(self, headers: Mapping[str, str]) -> RateLimitHint:
        return RateLimitHint(
            requests_remaining=self.parse_int_header(headers, "x-ratelimit-remaining-requests"),
            tokens_remaining=self.parse_int_header(headers, "x-ratelimit-remaining-tokens"),
            reset_after_seconds=parse_reset_duration(headers.get("x-ratelimit-reset-requests")),
        )
