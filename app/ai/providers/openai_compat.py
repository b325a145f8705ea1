"""OpenAI and Perplexity providers using the openai SDK."""

from __future__ import annotations

import logging

import httpx
import openai
from openai import AsyncOpenAI

from app.ai.providers.base import ChatCompletion, ChatMessage, ChatProvider, ProviderError, ProviderErrorKind, split_system_messages, usage_dict
from app.config import ProviderSettings

logger = logging.getLogger(__name__)


class OpenAICompatibleProvider(ChatProvider):
  """Chat completions against any OpenAI-compatible endpoint."""

  def __init__(self, settings: ProviderSettings, *, http_client: httpx.AsyncClient | None = None) -> None:
    if not settings.api_key:
      raise ProviderError(settings.name, ProviderErrorKind.MISSING_CREDENTIALS, f"{settings.name.upper()}_API_KEY is not configured")
    self.name: str = settings.name
    self._owns_client = http_client is None
    # The gateway owns timeouts and fallback, so the SDK must not retry on its own.
    self._client = AsyncOpenAI(api_key=settings.api_key, base_url=settings.base_url, max_retries=0, http_client=http_client)

  def _prepare_messages(self, messages: list[ChatMessage]) -> list[ChatMessage]:
    return [{"role": message["role"], "content": message["content"]} for message in messages]

  async def complete(self, messages: list[ChatMessage], *, model: str, temperature: float, max_tokens: int) -> ChatCompletion:
    try:
      response = await self._client.chat.completions.create(model=model, messages=self._prepare_messages(messages), temperature=temperature, max_tokens=max_tokens)  # type: ignore[arg-type]
    # APITimeoutError subclasses APIConnectionError, so it must be matched first.
    except openai.APITimeoutError as exc:
      raise ProviderError(self.name, ProviderErrorKind.TIMEOUT, "request timed out") from exc
    except openai.APIConnectionError as exc:
      raise ProviderError(self.name, ProviderErrorKind.NETWORK, f"connection failed: {exc}") from exc
    except openai.APIStatusError as exc:
      raise ProviderError(self.name, ProviderErrorKind.UPSTREAM_HTTP, f"HTTP {exc.status_code}: {exc.message}", status_code=exc.status_code) from exc
    except openai.APIResponseValidationError as exc:
      raise ProviderError(self.name, ProviderErrorKind.MALFORMED_RESPONSE, f"invalid response: {exc}") from exc

    choices = getattr(response, "choices", None) or []
    if not choices or getattr(choices[0], "message", None) is None:
      raise ProviderError(self.name, ProviderErrorKind.MALFORMED_RESPONSE, "response has no choices")

    choice = choices[0]
    content = choice.message.content or ""
    usage = None
    if response.usage:
      usage = usage_dict(response.usage.prompt_tokens, response.usage.completion_tokens)
    logger.debug("%s completion model=%s chars=%d finish_reason=%s", self.name, response.model or model, len(content), choice.finish_reason)
    return ChatCompletion(content=content, model_used=response.model or model, provider=self.name, truncated=choice.finish_reason == "length", usage=usage)

  async def aclose(self) -> None:
    # AsyncOpenAI.close also closes an injected http client.
    if self._owns_client:
      await self._client.close()


class OpenAIProvider(OpenAICompatibleProvider):
  """OpenAI chat completions."""


class PerplexityProvider(OpenAICompatibleProvider):
  """Perplexity chat completions.

  Perplexity does not take a system role the way the other providers do, so system
  prompts are folded into the first user message.
  """

  def _prepare_messages(self, messages: list[ChatMessage]) -> list[ChatMessage]:
    system, turns = split_system_messages(messages)
    prepared = [{"role": message["role"], "content": message["content"]} for message in turns]
    if system is None:
      return prepared
    for message in prepared:
      if message["role"] == "user":
        message["content"] = f"{system}\n\n{message['content']}"
        return prepared
    return [{"role": "user", "content": system}, *prepared]
