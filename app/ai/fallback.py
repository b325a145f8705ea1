"""Sequential provider fallback chain."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Protocol

from app.ai.providers.base import ChatCompletion, ChatMessage, ChatOptions, ProviderError
from app.core.errors import AllProvidersFailedError

logger = logging.getLogger(__name__)


class SupportsProviderCall(Protocol):
  async def call(self, provider: str, messages: list[ChatMessage], options: ChatOptions | None = None) -> ChatCompletion: ...


@dataclass(frozen=True)
class FallbackOk:
  content: str
  model_used: str
  provider_used: str
  usage: dict[str, int] | None = None
  ok: bool = field(default=True, init=False)

  def unwrap(self) -> FallbackOk:
    return self


@dataclass(frozen=True)
class FallbackFailed:
  reasons: list[str]
  ok: bool = field(default=False, init=False)

  @property
  def message(self) -> str:
    return "; ".join(self.reasons)

  def unwrap(self) -> FallbackOk:
    raise AllProvidersFailedError(self.reasons)


FallbackResult = FallbackOk | FallbackFailed


class ProviderFallbackChain:
  """Try providers one at a time in a fixed priority order.

  The requested model and timeout only apply to the first provider; later
  providers use their configured defaults.
  """

  def __init__(self, gateway: SupportsProviderCall, order: tuple[str, ...] | list[str]) -> None:
    if not order:
      raise ValueError("Fallback chain needs at least one provider.")
    self._gateway = gateway
    self._order = tuple(order)

  @property
  def order(self) -> tuple[str, ...]:
    return self._order

  def with_primary(self, primary: str) -> ProviderFallbackChain:
    """Return a chain that tries ``primary`` first and keeps the rest in order."""
    return ProviderFallbackChain(self._gateway, (primary, *(name for name in self._order if name != primary)))

  async def call_with_fallback(self, messages: list[ChatMessage], options: ChatOptions | None = None) -> FallbackResult:
    options = options or ChatOptions()
    reasons: list[str] = []

    for index, provider in enumerate(self._order):
      # Later providers use their own default model and timeout.
      attempt_options = options if index == 0 else ChatOptions(temperature=options.temperature, max_tokens=options.max_tokens)
      try:
        completion = await self._gateway.call(provider, messages, attempt_options)
      except ProviderError as exc:
        reasons.append(str(exc))
        logger.info("Fallback chain: %s failed (%s), trying next provider", provider, exc.kind.value)
        continue

      if not completion.content.strip():
        reasons.append(f"{provider}: empty content")
        logger.info("Fallback chain: %s returned empty content, trying next provider", provider)
        continue

      if index > 0:
        logger.warning("Fallback chain served by %s after %d failure(s)", provider, index)
      return FallbackOk(content=completion.content, model_used=completion.model_used, provider_used=provider, usage=completion.usage)

    logger.error("Fallback chain exhausted: %s", "; ".join(reasons))
    return FallbackFailed(reasons=reasons)
