"""Shared fixtures: in-memory stores, scripted providers and an ASGI client."""

from __future__ import annotations

import os

# Required settings must exist before the app module is imported.
os.environ["POLARIS_ALLOWED_ORIGINS"] = "http://localhost"
os.environ["POLARIS_JOBS_AUTO_PROCESS"] = "0"
os.environ["POLARIS_LOG_DIR"] = os.environ.get("POLARIS_LOG_DIR", "/tmp/polaris-test-logs")
os.environ.pop("POLARIS_PG_DSN", None)
os.environ.pop("DATABASE_URL", None)
os.environ.pop("POLARIS_PROVIDER_ORDER", None)
os.environ.pop("POLARIS_PRIMARY_PROVIDER", None)

from dataclasses import replace  # noqa: E402
from typing import Any  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from app.ai.gateway import ProviderGateway  # noqa: E402
from app.ai.providers.base import ChatCompletion, ChatMessage, ChatProvider  # noqa: E402
from app.config import KNOWN_PROVIDERS, Settings, get_settings  # noqa: E402
from app.jobs.factory import JobPipeline, build_pipeline  # noqa: E402
from app.main import app  # noqa: E402
from app.storage.memory_jobs_repo import InMemoryJobsRepository  # noqa: E402
from app.storage.memory_reports_repo import InMemoryReportsRepository  # noqa: E402

WEBHOOK_SECRET = "test-webhook-secret"


class ScriptedProvider(ChatProvider):
  """Provider double that replays ``outcomes``; the last outcome repeats forever."""

  def __init__(self, name: str, *outcomes: Any) -> None:
    self.name = name
    self.outcomes: list[Any] = list(outcomes) or [f"{name} answer"]
    self.calls: list[dict[str, Any]] = []
    self.closed = False

  async def complete(self, messages: list[ChatMessage], *, model: str, temperature: float, max_tokens: int) -> ChatCompletion:
    self.calls.append({"messages": messages, "model": model, "temperature": temperature, "max_tokens": max_tokens})
    outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
    if isinstance(outcome, BaseException):
      raise outcome
    if isinstance(outcome, ChatCompletion):
      return outcome
    return ChatCompletion(content=outcome, model_used=model, provider=self.name)

  async def aclose(self) -> None:
    self.closed = True


class WebhookSink:
  """MockTransport handler standing in for the report webhook endpoint."""

  def __init__(self, status_code: int = 200) -> None:
    self.status_code = status_code
    self.requests: list[httpx.Request] = []

  def __call__(self, request: httpx.Request) -> httpx.Response:
    self.requests.append(request)
    if 200 <= self.status_code < 300:
      return httpx.Response(self.status_code, json={"message": "Final report updated successfully"})
    return httpx.Response(self.status_code, json={"error": "receiver unavailable"})


@pytest.fixture
def anyio_backend() -> str:
  return "asyncio"


@pytest.fixture
def settings() -> Settings:
  """Settings with credentials for every provider and a known webhook secret."""
  base = get_settings.__wrapped__()
  providers = {name: replace(provider, api_key=f"test-{name}-key") for name, provider in base.providers.items()}
  webhook = replace(base.webhook, secret=WEBHOOK_SECRET, base_url="http://reports.test", endpoint="api/webhooks/final-report", max_retries=3)
  return replace(base, providers=providers, provider_order=KNOWN_PROVIDERS, jobs_auto_process=False, webhook=webhook)


@pytest.fixture
def jobs_repo() -> InMemoryJobsRepository:
  return InMemoryJobsRepository()


@pytest.fixture
def reports_repo() -> InMemoryReportsRepository:
  return InMemoryReportsRepository()


@pytest.fixture
def sleeps() -> list[float]:
  return []


@pytest.fixture
def fake_sleep(sleeps: list[float]):
  async def _sleep(seconds: float) -> None:
    sleeps.append(seconds)

  return _sleep


@pytest.fixture
def providers() -> dict[str, ScriptedProvider]:
  return {name: ScriptedProvider(name) for name in KNOWN_PROVIDERS}


@pytest.fixture
def webhook_sink() -> WebhookSink:
  return WebhookSink()


@pytest.fixture
async def pipeline(settings, jobs_repo, reports_repo, providers, webhook_sink, fake_sleep, monkeypatch: pytest.MonkeyPatch):
  """A pipeline wired to scripted providers and the mock webhook endpoint."""
  http_client = httpx.AsyncClient(transport=httpx.MockTransport(webhook_sink))
  built: JobPipeline = build_pipeline(settings, jobs_repo=jobs_repo, reports_repo=reports_repo, gateway=ProviderGateway(settings, providers=providers), http_client=http_client, sleep=fake_sleep)
  monkeypatch.setattr("app.jobs.factory._PIPELINE", built)
  yield built
  await built.aclose(drain_timeout=5)
  await http_client.aclose()


@pytest.fixture
async def async_client(settings, pipeline, jobs_repo, reports_repo, monkeypatch: pytest.MonkeyPatch):
  monkeypatch.setattr("app.services.jobs._get_jobs_repo", lambda _settings: jobs_repo)
  monkeypatch.setattr("app.services.webhooks._get_reports_repo", lambda _settings: reports_repo)
  app.dependency_overrides[get_settings] = lambda: settings
  async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
    yield client
  app.dependency_overrides.clear()
