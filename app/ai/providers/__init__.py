"""Provider implementations."""

from __future__ import annotations

import httpx

from app.ai.providers.base import ChatCompletion, ChatMessage, ChatOptions, ChatProvider, ProviderError, ProviderErrorKind
from app.config import ProviderSettings


def build_provider(settings: ProviderSettings, *, http_client: httpx.AsyncClient | None = None) -> ChatProvider:
  """Instantiate the adapter for ``settings.name``."""
  if settings.name == "perplexity":
    from app.ai.providers.openai_compat import PerplexityProvider

    return PerplexityProvider(settings, http_client=http_client)
  if settings.name == "openai":
    from app.ai.providers.openai_compat import OpenAIProvider

    return OpenAIProvider(settings, http_client=http_client)
  if settings.name == "anthropic":
    from app.ai.providers.anthropic import AnthropicProvider

    return AnthropicProvider(settings, http_client=http_client)
  if settings.name == "gemini":
    from app.ai.providers.gemini import GeminiProvider

    return GeminiProvider(settings)
  raise ValueError(f"Unsupported provider '{settings.name}'.")


__all__ = ["ChatCompletion", "ChatMessage", "ChatOptions", "ChatProvider", "ProviderError", "ProviderErrorKind", "build_provider"]
