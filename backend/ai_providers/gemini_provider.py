"""
Idea Engine - Google Gemini Provider

Adapter for Gemini via the google-genai unified SDK, using its native async
client (client.aio) so a cancelled or timed-out call is aborted instead of
finishing in a worker thread. Gemini does not expose quota headers; only
429s feed back into rate-limit state.

Rate Limit: 1000 requests / 1M tokens per minute
"""

import logging

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types as genai_types

from ai_errors import ProviderServerException
from .base_provider import BaseAIProvider, Completion

logger = logging.getLogger(__name__)


class GeminiProvider(BaseAIProvider):
    """Google Gemini Pro/Flash models."""

    provider_name = "gemini"
    env_key_name = "GOOGLE_AI_API_KEY"
    requests_per_minute = 1000
    tokens_per_minute = 1_000_000
    health_check_model = "gemini-2.5-flash"
    description = "Google Gemini 2.5 Pro/Flash (google-genai SDK)"

    def _get_client(self) -> genai.Client:
        if self._client is None:
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    async def _complete(self, model_id, prompt, max_tokens, temperature) -> Completion:
        client = self._get_client()
        try:
            response = await client.aio.models.generate_content(
                model=model_id,
                contents=prompt,
                config=genai_types.GenerateContentConfig(
                    max_output_tokens=max_tokens,
                    temperature=temperature,
                    top_p=0.95,
                    top_k=40,
                ),
            )
        except genai_errors.APIError as e:
            raise self.error_for_status(e.code, e.message or str(e)) from e
        except httpx.TransportError as e:
            raise ProviderServerException(self.provider_name, f"connection error: {e}") from e

        text = response.text or ""
        usage = response.usage_metadata
        input_tokens = getattr(usage, "prompt_token_count", None) if usage else None
        output_tokens = getattr(usage, "candidates_token_count", None) if usage else None

        finish_reason = None
        if response.candidates and response.candidates[0].finish_reason is not None:
            reason = response.candidates[0].finish_reason
            finish_reason = str(getattr(reason, "value", reason)).lower()

        return Completion(
            content=text,
            input_tokens=input_tokens if input_tokens is not None else self.estimate_tokens(prompt),
            output_tokens=output_tokens if output_tokens is not None else self.estimate_tokens(text),
            finish_reason=finish_reason,
        )
