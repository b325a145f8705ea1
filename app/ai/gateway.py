"""Single-provider chat-completion gateway with timeout control."""

from __future__ import annotations

import asyncio
import logging
import time

import httpx

from app.ai.model_routing import effective_timeout_ms, normalize_model
from app.ai.providers import build_provider
from app.ai.providers.base import ChatCompletion, ChatMessage, ChatOptions, ChatProvider, ProviderError, ProviderErrorKind
from app.config import Settings

logger = logging.getLogger(__name__)

# Headroom kept free in the context window for provider-side framing.
_CONTEXT_SAFETY_TOKENS = 512
_MIN_COMPLETION_TOKENS = 256


def estimate_tokens(messages: list[ChatMessage]) -> int:
  """Rough token estimate of roughly four characters per token."""
  return sum(len(message.get("content") or "") for message in messages) // 4


def clamp_max_tokens(messages: list[ChatMessage], requested: int, context_limit: int) -> int:
  """Keep the completion budget inside the provider's context window."""
  budget = context_limit - estimate_tokens(messages) - _CONTEXT_SAFETY_TOKENS
  return max(_MIN_COMPLETION_TOKENS, min(requested, budget))


class ProviderGateway:
  """Issue one chat completion against one named provider.

  The gateway checks credentials, normalizes the model alias, clamps the token
  budget, and bounds the call with ``asyncio.timeout``. When the deadline fires the
  in-flight request task is cancelled, which aborts the HTTP exchange.
  """

  def __init__(self, settings: Settings, *, providers: dict[str, ChatProvider] | None = None, http_client: httpx.AsyncClient | None = None) -> None:
    self._settings = settings
    self._providers: dict[str, ChatProvider] = dict(providers or {})
    self._http_client = http_client

  def has_credentials(self, provider: str) -> bool:
    return self._settings.provider(provider).has_credentials

  def _adapter(self, provider: str) -> ChatProvider:
    adapter = self._providers.get(provider)
    if adapter is None:
      adapter = build_provider(self._settings.provider(provider), http_client=self._http_client)
      self._providers[provider] = adapter
    return adapter

  async def call(self, provider: str, messages: list[ChatMessage], options: ChatOptions | None = None) -> ChatCompletion:
    """Return the provider's completion or raise ``ProviderError``."""
    options = options or ChatOptions()
    provider_settings = self._settings.provider(provider)
    if not provider_settings.has_credentials:
      raise ProviderError(provider, ProviderErrorKind.MISSING_CREDENTIALS, f"{provider.upper()}_API_KEY is not configured")

    model = normalize_model(provider, options.model, provider_settings.model)
    temperature = self._settings.default_temperature if options.temperature is None else options.temperature
    max_tokens = clamp_max_tokens(messages, options.max_tokens or self._settings.default_max_tokens, provider_settings.context_limit)
    timeout_ms = options.timeout_ms or effective_timeout_ms(model, provider_settings.timeout_ms, factor=self._settings.reasoning_timeout_factor, cap_ms=self._settings.reasoning_timeout_cap_ms)

    adapter = self._adapter(provider)
    started = time.perf_counter()
    logger.info("Calling provider=%s model=%s max_tokens=%d timeout_ms=%d", provider, model, max_tokens, timeout_ms)
    try:
      async with asyncio.timeout(timeout_ms / 1000):
        completion = await adapter.complete(messages, model=model, temperature=temperature, max_tokens=max_tokens)
    except TimeoutError as exc:
      logger.warning("Provider %s timed out after %dms", provider, timeout_ms)
      raise ProviderError(provider, ProviderErrorKind.TIMEOUT, f"timed out after {timeout_ms}ms") from exc
    except ProviderError as exc:
      logger.warning("Provider %s failed kind=%s: %s", provider, exc.kind.value, exc.detail)
      raise

    elapsed_ms = (time.perf_counter() - started) * 1000
    if completion.truncated:
      logger.warning("Provider %s truncated output at max_tokens=%d", provider, max_tokens)
      raise ProviderError(provider, ProviderErrorKind.MALFORMED_RESPONSE, f"response truncated at max_tokens={max_tokens}")

    logger.info("Provider %s completed model=%s chars=%d (took %.2fms)", provider, completion.model_used, len(completion.content), elapsed_ms)
    return completion

  async def aclose(self) -> None:
    for adapter in self._providers.values():
      await adapter.aclose()
