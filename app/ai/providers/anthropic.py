"""Anthropic Messages API provider over httpx."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from app.ai.providers.base import ChatCompletion, ChatMessage, ChatProvider, ProviderError, ProviderErrorKind, split_system_messages, usage_dict
from app.config import ProviderSettings

logger = logging.getLogger(__name__)


def _error_message(response: httpx.Response) -> str:
  try:
    body = response.json()
  except ValueError:
    return response.text[:500]
  error = body.get("error") if isinstance(body, dict) else None
  if isinstance(error, dict) and error.get("message"):
    return str(error["message"])
  return response.text[:500]


class AnthropicProvider(ChatProvider):
  """Call ``POST /v1/messages`` and return the first text block."""

  def __init__(self, settings: ProviderSettings, *, http_client: httpx.AsyncClient | None = None) -> None:
    if not settings.api_key:
      raise ProviderError("anthropic", ProviderErrorKind.MISSING_CREDENTIALS, "ANTHROPIC_API_KEY is not configured")
    self.name: str = "anthropic"
    self._url = f"{(settings.base_url or 'https://api.anthropic.com').rstrip('/')}/v1/messages"
    self._headers = {"x-api-key": settings.api_key, "anthropic-version": settings.api_version or "2023-06-01", "content-type": "application/json"}
    self._owns_client = http_client is None
    # Never trust environment proxy variables for provider traffic.
    self._client = http_client or httpx.AsyncClient(trust_env=False, timeout=None)

  async def complete(self, messages: list[ChatMessage], *, model: str, temperature: float, max_tokens: int) -> ChatCompletion:
    system, turns = split_system_messages(messages)
    payload: dict[str, Any] = {"model": model, "max_tokens": max_tokens, "temperature": temperature, "messages": [{"role": message["role"], "content": message["content"]} for message in turns]}
    if system:
      payload["system"] = system

    try:
      response = await self._client.post(self._url, json=payload, headers=self._headers)
    except httpx.TimeoutException as exc:
      raise ProviderError(self.name, ProviderErrorKind.TIMEOUT, "request timed out") from exc
    except httpx.RequestError as exc:
      raise ProviderError(self.name, ProviderErrorKind.NETWORK, f"connection failed: {exc}") from exc

    if response.status_code >= 400:
      raise ProviderError(self.name, ProviderErrorKind.UPSTREAM_HTTP, f"HTTP {response.status_code}: {_error_message(response)}", status_code=response.status_code)

    try:
      body = response.json()
    except ValueError as exc:
      raise ProviderError(self.name, ProviderErrorKind.MALFORMED_RESPONSE, "response body is not JSON") from exc

    blocks = body.get("content") if isinstance(body, dict) else None
    if not isinstance(blocks, list):
      raise ProviderError(self.name, ProviderErrorKind.MALFORMED_RESPONSE, "response has no content blocks")

    text = next((block.get("text") for block in blocks if isinstance(block, dict) and block.get("type") == "text"), None)
    usage_raw = body.get("usage") or {}
    logger.debug("anthropic completion model=%s stop_reason=%s", body.get("model"), body.get("stop_reason"))
    return ChatCompletion(
      content=str(text or ""),
      model_used=str(body.get("model") or model),
      provider=self.name,
      truncated=body.get("stop_reason") == "max_tokens",
      usage=usage_dict(usage_raw.get("input_tokens"), usage_raw.get("output_tokens")),
    )

  async def aclose(self) -> None:
    if self._owns_client:
      await self._client.aclose()
