"""Gemini provider implementation using the google-genai SDK."""

from __future__ import annotations

import logging
import warnings
from typing import Any

import httpx
from pydantic.warnings import ArbitraryTypeWarning

with warnings.catch_warnings():
  warnings.filterwarnings("ignore", message=r"<built-in function any> is not a Python type.*", category=ArbitraryTypeWarning)
  from google import genai
  from google.genai import errors as genai_errors
  from google.genai import types

from app.ai.providers.base import ChatCompletion, ChatMessage, ChatProvider, ProviderError, ProviderErrorKind, split_system_messages, usage_dict
from app.config import ProviderSettings

logger = logging.getLogger(__name__)


def _to_contents(turns: list[ChatMessage]) -> list[types.Content]:
  # Gemini names the assistant role "model".
  return [types.Content(role="model" if message["role"] == "assistant" else "user", parts=[types.Part(text=message["content"])]) for message in turns]


class GeminiProvider(ChatProvider):
  """Chat completions through ``client.aio.models.generate_content``."""

  def __init__(self, settings: ProviderSettings, *, client: Any | None = None) -> None:
    if not settings.api_key and client is None:
      raise ProviderError("gemini", ProviderErrorKind.MISSING_CREDENTIALS, "GEMINI_API_KEY is not configured")
    self.name: str = "gemini"
    http_options = types.HttpOptions(base_url=settings.base_url) if settings.base_url else None
    self._client = client or genai.Client(api_key=settings.api_key, http_options=http_options)

  async def complete(self, messages: list[ChatMessage], *, model: str, temperature: float, max_tokens: int) -> ChatCompletion:
    system, turns = split_system_messages(messages)
    config = types.GenerateContentConfig(system_instruction=system, temperature=temperature, max_output_tokens=max_tokens)

    try:
      # Use the async client to avoid blocking the asyncio event loop.
      response = await self._client.aio.models.generate_content(model=model, contents=_to_contents(turns), config=config)
    except genai_errors.APIError as exc:
      raise ProviderError(self.name, ProviderErrorKind.UPSTREAM_HTTP, f"HTTP {exc.code}: {exc.message}", status_code=exc.code) from exc
    except httpx.TimeoutException as exc:
      raise ProviderError(self.name, ProviderErrorKind.TIMEOUT, "request timed out") from exc
    except httpx.RequestError as exc:
      raise ProviderError(self.name, ProviderErrorKind.NETWORK, f"connection failed: {exc}") from exc

    candidates = getattr(response, "candidates", None) or []
    if not candidates:
      raise ProviderError(self.name, ProviderErrorKind.MALFORMED_RESPONSE, "response has no candidates")

    finish_reason = getattr(candidates[0], "finish_reason", None)
    usage = None
    if response.usage_metadata:
      usage = usage_dict(response.usage_metadata.prompt_token_count, response.usage_metadata.candidates_token_count)
    logger.debug("gemini completion model=%s finish_reason=%s", model, finish_reason)
    return ChatCompletion(content=response.text or "", model_used=getattr(response, "model_version", None) or model, provider=self.name, truncated=finish_reason == types.FinishReason.MAX_TOKENS, usage=usage)
