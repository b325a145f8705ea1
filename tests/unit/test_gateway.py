"""Provider gateway behavior against mocked upstream HTTP APIs."""

from __future__ import annotations

import asyncio
import json
from dataclasses import replace

import httpx
import pytest

from app.ai.gateway import ProviderGateway, clamp_max_tokens, estimate_tokens
from app.ai.providers.base import ChatCompletion, ChatOptions, ChatProvider, ProviderError, ProviderErrorKind

MESSAGES = [{"role": "system", "content": "Be brief."}, {"role": "user", "content": "Summarize X"}]


def _openai_body(content: str, *, model: str = "gpt-4o-mini", finish_reason: str = "stop") -> dict:
  return {
    "id": "chatcmpl-1",
    "object": "chat.completion",
    "created": 1700000000,
    "model": model,
    "choices": [{"index": 0, "message": {"role": "assistant", "content": content}, "finish_reason": finish_reason}],
    "usage": {"prompt_tokens": 12, "completion_tokens": 3, "total_tokens": 15},
  }


class SlowProvider(ChatProvider):
  name = "openai"

  async def complete(self, messages, *, model, temperature, max_tokens) -> ChatCompletion:
    await asyncio.sleep(5)
    return ChatCompletion(content="late", model_used=model, provider=self.name)


def test_clamp_max_tokens_respects_context_window() -> None:
  assert estimate_tokens([{"role": "user", "content": "x" * 400}]) == 100
  assert clamp_max_tokens(MESSAGES, 2600, 128_000) == 2600
  assert clamp_max_tokens([{"role": "user", "content": "x" * 40_000}], 2600, 11_000) == 11_000 - 10_000 - 512
  assert clamp_max_tokens([{"role": "user", "content": "x" * 400_000}], 2600, 8_000) == 256


@pytest.mark.anyio
async def test_openai_call_returns_normalized_completion(settings) -> None:
  seen: list[dict] = []

  def handler(request: httpx.Request) -> httpx.Response:
    assert request.url.path == "/v1/chat/completions"
    assert request.headers["authorization"] == "Bearer test-openai-key"
    seen.append(json.loads(request.content))
    return httpx.Response(200, json=_openai_body("Hi there"))

  async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
    gateway = ProviderGateway(settings, http_client=client)
    completion = await gateway.call("openai", MESSAGES)
    await gateway.aclose()

  assert completion.content == "Hi there"
  assert completion.model_used == "gpt-4o-mini"
  assert completion.provider == "openai"
  assert completion.usage == {"prompt_tokens": 12, "completion_tokens": 3, "total_tokens": 15}
  assert seen[0]["model"] == "gpt-4o-mini"
  assert seen[0]["max_tokens"] == settings.default_max_tokens
  assert seen[0]["messages"][0] == {"role": "system", "content": "Be brief."}


@pytest.mark.anyio
async def test_perplexity_folds_system_prompt_and_normalizes_model(settings) -> None:
  seen: list[dict] = []

  def handler(request: httpx.Request) -> httpx.Response:
    seen.append(json.loads(request.content))
    return httpx.Response(200, json=_openai_body("Sourced answer", model="sonar-pro"))

  async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
    gateway = ProviderGateway(settings, http_client=client)

    completion = await gateway.call("perplexity", MESSAGES, ChatOptions(model="Sonar Pro", temperature=0.5))

  assert completion.model_used == "sonar-pro"
  assert seen[0]["model"] == "sonar-pro"
  assert seen[0]["temperature"] == 0.5
  assert seen[0]["messages"] == [{"role": "user", "content": "Be brief.\n\nSummarize X"}]


@pytest.mark.anyio
async def test_upstream_error_is_classified(settings) -> None:
  def handler(request: httpx.Request) -> httpx.Response:
    return httpx.Response(500, json={"error": {"message": "overloaded", "type": "server_error"}})

  async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
    gateway = ProviderGateway(settings, http_client=client)
    with pytest.raises(ProviderError) as excinfo:
      await gateway.call("openai", MESSAGES)

  assert excinfo.value.kind is ProviderErrorKind.UPSTREAM_HTTP
  assert excinfo.value.status_code == 500
  assert str(excinfo.value).startswith("openai: HTTP 500")


@pytest.mark.anyio
async def test_truncated_output_is_malformed(settings) -> None:
  def handler(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, json=_openai_body("cut mid sent", finish_reason="length"))

  async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
    gateway = ProviderGateway(settings, http_client=client)
    with pytest.raises(ProviderError) as excinfo:
      await gateway.call("openai", MESSAGES)

  assert excinfo.value.kind is ProviderErrorKind.MALFORMED_RESPONSE


@pytest.mark.anyio
async def test_anthropic_messages_api(settings) -> None:
  seen: list[httpx.Request] = []

  def handler(request: httpx.Request) -> httpx.Response:
    seen.append(request)
    return httpx.Response(
      200,
      json={"model": "claude-3-5-sonnet-latest", "content": [{"type": "text", "text": "Claude says hi"}], "stop_reason": "end_turn", "usage": {"input_tokens": 10, "output_tokens": 4}},
    )

  async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
    gateway = ProviderGateway(settings, http_client=client)
    completion = await gateway.call("anthropic", MESSAGES)
    await gateway.aclose()
    assert not client.is_closed

  request = seen[0]
  body = json.loads(request.content)
  assert str(request.url) == "https://api.anthropic.com/v1/messages"
  assert request.headers["x-api-key"] == "test-anthropic-key"
  assert request.headers["anthropic-version"] == "2023-06-01"
  assert body["system"] == "Be brief."
  assert body["messages"] == [{"role": "user", "content": "Summarize X"}]
  assert completion.content == "Claude says hi"
  assert completion.usage == {"prompt_tokens": 10, "completion_tokens": 4, "total_tokens": 14}


@pytest.mark.anyio
async def test_anthropic_network_failure(settings) -> None:
  def handler(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("connection refused", request=request)

  async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
    gateway = ProviderGateway(settings, http_client=client)
    with pytest.raises(ProviderError) as excinfo:
      await gateway.call("anthropic", MESSAGES)

  assert excinfo.value.kind is ProviderErrorKind.NETWORK


@pytest.mark.anyio
async def test_missing_credentials_fail_without_calling(settings, providers) -> None:
  providers_settings = dict(settings.providers)
  providers_settings["openai"] = replace(providers_settings["openai"], api_key=None)
  gateway = ProviderGateway(replace(settings, providers=providers_settings), providers=providers)

  assert not gateway.has_credentials("openai")
  with pytest.raises(ProviderError) as excinfo:
    await gateway.call("openai", MESSAGES)

  assert excinfo.value.kind is ProviderErrorKind.MISSING_CREDENTIALS
  assert "OPENAI_API_KEY" in str(excinfo.value)
  assert providers["openai"].calls == []


@pytest.mark.anyio
async def test_deadline_cancels_slow_provider(settings) -> None:
  gateway = ProviderGateway(settings, providers={"openai": SlowProvider()})
  with pytest.raises(ProviderError) as excinfo:
    await gateway.call("openai", MESSAGES, ChatOptions(timeout_ms=20))

  assert excinfo.value.kind is ProviderErrorKind.TIMEOUT
  assert "timed out after 20ms" in str(excinfo.value)


@pytest.mark.anyio
@pytest.mark.parametrize(("model", "expected_ms"), [(None, 20), ("gpt-reasoning-preview", 30)])
async def test_default_deadline_uses_provider_timeout(settings, model, expected_ms) -> None:
  providers = {**settings.providers, "openai": replace(settings.provider("openai"), timeout_ms=20)}
  gateway = ProviderGateway(replace(settings, providers=providers, reasoning_timeout_factor=1.5), providers={"openai": SlowProvider()})

  with pytest.raises(ProviderError) as excinfo:
    await gateway.call("openai", MESSAGES, ChatOptions(model=model))

  assert excinfo.value.kind is ProviderErrorKind.TIMEOUT
  assert f"timed out after {expected_ms}ms" in str(excinfo.value)


@pytest.mark.anyio
async def test_gateway_fills_defaults_for_injected_provider(settings, providers) -> None:
  gateway = ProviderGateway(settings, providers=providers)
  completion = await gateway.call("gemini", MESSAGES)

  call = providers["gemini"].calls[0]
  assert completion.content == "gemini answer"
  assert call["model"] == settings.provider("gemini").model
  assert call["temperature"] == settings.default_temperature
  assert call["max_tokens"] == settings.default_max_tokens
  await gateway.aclose()
  assert providers["gemini"].closed
