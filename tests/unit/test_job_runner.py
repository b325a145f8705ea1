"""JobRunner drives queued jobs to a terminal state and notifies the report row."""

from __future__ import annotations

from dataclasses import replace
from unittest.mock import AsyncMock

import pytest

from app.ai.fallback import ProviderFallbackChain
from app.ai.gateway import ProviderGateway
from app.ai.providers.base import ChatCompletion, ProviderError, ProviderErrorKind
from app.core.errors import JobStoreError
from app.jobs.models import JobRecord
from app.jobs.progress import MILESTONES, PROGRESS_COMPLETE
from app.jobs.runner import JobRunner
from app.notifications.webhook_notifier import CompletionNotifier, NotifyResult
from app.services import jobs as job_service
from app.storage.memory_jobs_repo import InMemoryJobsRepository
from app.storage.reports_repo import ReportRecord

ORDER = ("perplexity", "anthropic", "openai", "gemini")


def _job(job_id: str = "job_1_runner00", **metadata: str) -> JobRecord:
  return JobRecord(
    job_id=job_id,
    status="queued",
    created_at="2026-01-01T00:00:00Z",
    updated_at="2026-01-01T00:00:00Z",
    prompt="Summarize X",
    model="sonar",
    temperature=0.2,
    max_tokens=2600,
    eta_seconds=90,
    metadata=dict(metadata),
  )


class RecordingJobsRepository(InMemoryJobsRepository):
  def __init__(self) -> None:
    super().__init__()
    self.percents: list[int] = []

  async def update_job(self, job_id, **fields):
    if fields.get("percent") is not None:
      self.percents.append(fields["percent"])
    return await super().update_job(job_id, **fields)


def _runner(settings, jobs_repo, providers, notifier, reports_repo=None) -> JobRunner:
  chain = ProviderFallbackChain(ProviderGateway(settings, providers=providers), ORDER)
  return JobRunner(settings, jobs_repo, chain, notifier, reports_repo)


def _notifier() -> AsyncMock:
  notifier = AsyncMock(spec=CompletionNotifier)
  notifier.notify.return_value = NotifyResult(success=True, used_webhook=True, attempts=1)
  return notifier


@pytest.mark.anyio
async def test_success_stores_result_and_notifies(settings, providers, reports_repo) -> None:
  jobs_repo = RecordingJobsRepository()
  await jobs_repo.create_job(_job(report_type="org", report_id="r1"))
  reports_repo.seed("org_reports", ReportRecord(id="r1"))
  providers["perplexity"].outcomes = ["  OK  "]
  notifier = _notifier()

  await _runner(settings, jobs_repo, providers, notifier, reports_repo).run("job_1_runner00")

  record = await jobs_repo.get_job("job_1_runner00")
  assert record.status == "succeeded"
  assert record.result == "OK"
  assert record.percent == PROGRESS_COMPLETE
  assert record.eta_seconds == 0
  assert record.started_at is not None and record.completed_at is not None
  assert record.metadata["provider_used"] == "perplexity"
  assert record.metadata["model_used"] == "sonar"
  assert jobs_repo.percents == sorted(jobs_repo.percents)
  assert set(jobs_repo.percents) <= set(MILESTONES)

  report = await reports_repo.get_report("org_reports", "r1")
  assert report.research_status == "running"
  assert report.webhook_job_id == "job_1_runner00"

  args = notifier.notify.await_args.args
  assert args[:5] == ("job_1_runner00", "r1", "org", "OK", "completed")
  assert args[5]["provider"] == "perplexity"


@pytest.mark.anyio
async def test_system_prompt_precedes_user_prompt(settings, providers, jobs_repo) -> None:
  await jobs_repo.create_job(_job())
  await _runner(settings, jobs_repo, providers, _notifier()).run("job_1_runner00")

  messages = providers["perplexity"].calls[0]["messages"]
  assert [message["role"] for message in messages] == ["system", "user"]
  assert messages[1]["content"] == "Summarize X"


@pytest.mark.anyio
async def test_chain_failure_marks_job_failed(settings, providers, jobs_repo) -> None:
  for name in ORDER:
    providers[name].outcomes = [ProviderError(name, ProviderErrorKind.UPSTREAM_HTTP, "HTTP 500: down")]
  await jobs_repo.create_job(_job(report_type="greeting", report_id="g1"))
  notifier = _notifier()

  await _runner(settings, jobs_repo, providers, notifier).run("job_1_runner00")

  record = await jobs_repo.get_job("job_1_runner00")
  assert record.status == "failed"
  assert record.result is None
  assert record.error == "; ".join(f"{name}: HTTP 500: down" for name in ORDER)
  assert record.completed_at is not None
  args = notifier.notify.await_args.args
  assert args[:5] == ("job_1_runner00", "g1", "greeting", "", "failed")
  assert args[6] == record.error


@pytest.mark.anyio
async def test_jobs_without_report_link_are_not_notified(settings, providers, jobs_repo) -> None:
  await jobs_repo.create_job(_job())
  notifier = _notifier()

  await _runner(settings, jobs_repo, providers, notifier).run("job_1_runner00")

  assert (await jobs_repo.get_job("job_1_runner00")).status == "succeeded"
  notifier.notify.assert_not_awaited()


@pytest.mark.anyio
async def test_notification_crash_keeps_job_outcome(settings, providers, jobs_repo) -> None:
  await jobs_repo.create_job(_job(report_type="org", report_id="r1"))
  notifier = _notifier()
  notifier.notify.side_effect = RuntimeError("receiver exploded")

  await _runner(settings, jobs_repo, providers, notifier).run("job_1_runner00")

  assert (await jobs_repo.get_job("job_1_runner00")).status == "succeeded"


@pytest.mark.anyio
async def test_only_queued_jobs_run(settings, providers, jobs_repo) -> None:
  job = _job()
  job.status = "running"
  await jobs_repo.create_job(job)

  await _runner(settings, jobs_repo, providers, _notifier()).run("job_1_runner00")
  await _runner(settings, jobs_repo, providers, _notifier()).run("job_missing")

  assert all(not provider.calls for provider in providers.values())


@pytest.mark.anyio
async def test_progress_write_failures_do_not_abort(settings, providers) -> None:
  class FlakyProgressRepository(InMemoryJobsRepository):
    async def update_job(self, job_id, **fields):
      if fields.get("status") is None:
        raise JobStoreError("progress write failed")
      return await super().update_job(job_id, **fields)

  jobs_repo = FlakyProgressRepository()
  await jobs_repo.create_job(_job())

  await _runner(settings, jobs_repo, providers, _notifier()).run("job_1_runner00")

  record = await jobs_repo.get_job("job_1_runner00")
  assert record.status == "succeeded"
  assert record.result == "perplexity answer"


@pytest.mark.anyio
async def test_reasoning_models_get_extended_timeout(settings, providers, jobs_repo) -> None:
  runner = _runner(settings, jobs_repo, providers, _notifier())
  base = settings.provider("perplexity").timeout_ms
  assert runner.timeout_for("sonar") == base
  assert runner.timeout_for("sonar-reasoning-pro") == min(settings.reasoning_timeout_cap_ms, int(base * settings.reasoning_timeout_factor))


@pytest.mark.anyio
async def test_default_model_follows_configured_primary(settings, providers, jobs_repo, monkeypatch: pytest.MonkeyPatch) -> None:
  order = ("openai", "perplexity", "anthropic", "gemini")
  openai_first = replace(settings, provider_order=order)
  monkeypatch.setattr(job_service, "_get_jobs_repo", lambda _settings: jobs_repo)

  created = await job_service.create_job({"prompt": "Summarize X"}, openai_first)
  chain = ProviderFallbackChain(ProviderGateway(openai_first, providers=providers), order)
  await JobRunner(openai_first, jobs_repo, chain, _notifier()).run(created.job_id)

  record = await jobs_repo.get_job(created.job_id)
  expected = openai_first.provider("openai").model
  assert record.model == expected
  assert providers["openai"].calls[0]["model"] == expected
  assert record.metadata["provider_used"] == "openai"
  assert not providers["perplexity"].calls


@pytest.mark.anyio
async def test_token_usage_is_recorded_with_provenance(settings, providers, jobs_repo) -> None:
  usage = {"prompt_tokens": 40, "completion_tokens": 8, "total_tokens": 48}
  providers["perplexity"].outcomes = [ChatCompletion(content="OK", model_used="sonar", provider="perplexity", usage=usage)]
  await jobs_repo.create_job(_job())

  await _runner(settings, jobs_repo, providers, _notifier()).run("job_1_runner00")

  record = await jobs_repo.get_job("job_1_runner00")
  assert record.metadata["usage"] == usage
  assert record.metadata["provider_used"] == "perplexity"
