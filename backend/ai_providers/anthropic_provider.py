"""
Idea Engine - Anthropic Provider

Messages API adapter for the Claude family. Anthropic reports remaining
quota in anthropic-ratelimit-* headers with RFC 3339 reset timestamps.

Rate Limit: 4000 requests / 400K tokens per minute
"""

import logging
from datetime import datetime, timezone
from typing import Optional, Mapping

import anthropic
from anthropic import AsyncAnthropic

from ai_errors import ProviderServerException
from ai_types import RateLimitHint
from .base_provider import BaseAIProvider, Completion

logger = logging.getLogger(__name__)


def seconds_until(timestamp: Optional[str]) -> Optional[float]:
    """Seconds from now until an RFC 3339 timestamp, or None if unparseable."""
    if not timestamp:
        return None
    try:
        when = datetime.fromisoformat(timestamp.replace("Z", "+00:00"))
    except ValueError:
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


class AnthropicProvider(BaseAIProvider):
    """Anthropic Claude models via the official async SDK."""

    provider_name = "anthropic"
    env_key_name = "ANTHROPIC_API_KEY"
    requests_per_minute = 4000
    tokens_per_minute = 400_000
    health_check_model = "claude-haiku-4-5-20251001"
    description = "Anthropic Claude Opus/Sonnet/Haiku (Messages API)"

    def _get_client(self) -> AsyncAnthropic:
        if self._client is None:
            self._client = AsyncAnthropic(api_key=self.api_key, max_retries=0)
        return self._client

    async def _complete(self, model_id, prompt, max_tokens, temperature) -> Completion:
        client = self._get_client()
        try:
            raw = await client.messages.with_raw_response.create(
                model=model_id,
                max_tokens=max_tokens,
                temperature=temperature,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.APIStatusError as e:
            raise self.error_for_status(
                e.status_code, e.message, retry_after=self.parse_retry_after(e.response.headers)
            ) from e
        except anthropic.APIConnectionError as e:
            raise ProviderServerException(self.provider_name, f"connection error: {e}") from e

        message = raw.parse()
        text = "".join(
            block.text for block in message.content if getattr(block, "type", None) == "text"
        )
        usage = message.usage

        return Completion(
            content=text,
            input_tokens=usage.input_tokens if usage else self.estimate_tokens(prompt),
            output_tokens=usage.output_tokens if usage else self.estimate_tokens(text),
            finish_reason=message.stop_reason,
            rate_limit=self._rate_limit_hint(raw.headers),
        )

    def _rate_limit_hint(self, headers: Mapping[str, str]) -> RateLimitHint:
        return RateLimitHint(
            requests_remaining=self.parse_int_header(headers, "anthropic-ratelimit-requests-remaining"),
            tokens_remaining=self.parse_int_header(headers, "anthropic-ratelimit-tokens-remaining"),
            reset_after_seconds=seconds_until(headers.get("anthropic-ratelimit-requests-reset")),
        )
