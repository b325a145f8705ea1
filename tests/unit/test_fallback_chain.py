"""Sequential provider fallback."""

from __future__ import annotations

import pytest

from app.ai.fallback import FallbackFailed, FallbackOk, ProviderFallbackChain
from app.ai.gateway import ProviderGateway
from app.ai.providers.base import ChatCompletion, ChatOptions, ProviderError, ProviderErrorKind
from app.core.errors import AllProvidersFailedError

MESSAGES = [{"role": "user", "content": "Summarize X"}]
ORDER = ("perplexity", "anthropic", "openai", "gemini")


def _error(provider: str, kind: ProviderErrorKind = ProviderErrorKind.UPSTREAM_HTTP, message: str = "HTTP 503: unavailable") -> ProviderError:
  return ProviderError(provider, kind, message)


@pytest.mark.anyio
async def test_primary_success_skips_the_rest(settings, providers) -> None:
  chain = ProviderFallbackChain(ProviderGateway(settings, providers=providers), ORDER)
  result = await chain.call_with_fallback(MESSAGES)

  assert isinstance(result, FallbackOk)
  assert result.provider_used == "perplexity"
  assert [name for name, provider in providers.items() if provider.calls] == ["perplexity"]


@pytest.mark.anyio
@pytest.mark.parametrize("k", [1, 2, 3])
async def test_kth_provider_serves_after_failures(settings, providers, k: int) -> None:
  for name in ORDER[:k]:
    providers[name].outcomes = [_error(name)]
  chain = ProviderFallbackChain(ProviderGateway(settings, providers=providers), ORDER)

  result = await chain.call_with_fallback(MESSAGES)

  assert result.ok
  assert result.provider_used == ORDER[k]
  assert result.content == f"{ORDER[k]} answer"
  # Nothing after the serving provider is contacted.
  assert all(not providers[name].calls for name in ORDER[k + 1 :])
  assert all(len(providers[name].calls) == 1 for name in ORDER[: k + 1])


@pytest.mark.anyio
async def test_all_failures_are_reported_in_order(settings, providers) -> None:
  providers["perplexity"].outcomes = [_error("perplexity", ProviderErrorKind.TIMEOUT, "timed out after 75000ms")]
  providers["anthropic"].outcomes = [_error("anthropic")]
  providers["openai"].outcomes = [""]
  providers["gemini"].outcomes = [_error("gemini", ProviderErrorKind.NETWORK, "connection failed")]
  chain = ProviderFallbackChain(ProviderGateway(settings, providers=providers), ORDER)

  result = await chain.call_with_fallback(MESSAGES)

  assert isinstance(result, FallbackFailed)
  assert result.reasons == ["perplexity: timed out after 75000ms", "anthropic: HTTP 503: unavailable", "openai: empty content", "gemini: connection failed"]
  assert result.message == "; ".join(result.reasons)
  with pytest.raises(AllProvidersFailedError) as excinfo:
    result.unwrap()
  assert excinfo.value.reasons == result.reasons


@pytest.mark.anyio
async def test_whitespace_content_counts_as_failure(settings, providers) -> None:
  providers["perplexity"].outcomes = ["   \n"]
  chain = ProviderFallbackChain(ProviderGateway(settings, providers=providers), ORDER)

  result = await chain.call_with_fallback(MESSAGES)

  assert result.provider_used == "anthropic"


@pytest.mark.anyio
async def test_requested_model_only_applies_to_first_provider(settings, providers) -> None:
  providers["perplexity"].outcomes = [_error("perplexity")]
  chain = ProviderFallbackChain(ProviderGateway(settings, providers=providers), ORDER)

  result = await chain.call_with_fallback(MESSAGES, ChatOptions(model="sonar-reasoning", temperature=0.7, max_tokens=900))

  assert providers["perplexity"].calls[0]["model"] == "sonar-reasoning"
  anthropic_call = providers["anthropic"].calls[0]
  assert anthropic_call["model"] == settings.provider("anthropic").model
  assert anthropic_call["temperature"] == 0.7
  assert anthropic_call["max_tokens"] == 900
  assert result.model_used == settings.provider("anthropic").model


@pytest.mark.anyio
async def test_with_primary_reorders_chain(settings, providers) -> None:
  chain = ProviderFallbackChain(ProviderGateway(settings, providers=providers), ORDER).with_primary("openai")
  assert chain.order == ("openai", "perplexity", "anthropic", "gemini")

  result = await chain.call_with_fallback(MESSAGES)
  assert result.provider_used == "openai"


def test_empty_order_is_rejected(settings, providers) -> None:
  with pytest.raises(ValueError):
    ProviderFallbackChain(ProviderGateway(settings, providers=providers), ())


class RecordingGateway:
  """Gateway double that fails every call and records the options it received."""

  def __init__(self) -> None:
    self.sent: list[tuple[str, ChatOptions]] = []

  async def call(self, provider, messages, options=None):
    self.sent.append((provider, options))
    raise _error(provider)


@pytest.mark.anyio
async def test_later_providers_do_not_inherit_primary_timeout() -> None:
  gateway = RecordingGateway()
  chain = ProviderFallbackChain(gateway, ORDER)

  await chain.call_with_fallback(MESSAGES, ChatOptions(model="sonar-reasoning", temperature=0.3, max_tokens=900, timeout_ms=75_000))

  primary, primary_options = gateway.sent[0]
  assert primary == "perplexity"
  assert primary_options.timeout_ms == 75_000
  for provider, options in gateway.sent[1:]:
    assert options.timeout_ms is None, provider
    assert options.model is None
    assert (options.temperature, options.max_tokens) == (0.3, 900)


@pytest.mark.anyio
async def test_token_usage_is_carried_to_result(settings, providers) -> None:
  providers["perplexity"].outcomes = [ChatCompletion(content="OK", model_used="sonar", provider="perplexity", usage={"prompt_tokens": 12, "completion_tokens": 3, "total_tokens": 15})]
  chain = ProviderFallbackChain(ProviderGateway(settings, providers=providers), ORDER)

  result = await chain.call_with_fallback(MESSAGES)

  assert result.usage == {"prompt_tokens": 12, "completion_tokens": 3, "total_tokens": 15}
