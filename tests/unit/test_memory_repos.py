from __future__ import annotations

from dataclasses import replace

import pytest

from app.jobs.models import JobRecord
from app.storage.memory_jobs_repo import InMemoryJobsRepository
from app.storage.memory_reports_repo import InMemoryReportsRepository
from app.storage.reports_repo import ReportRecord, report_table_for_type, report_type_for_table


def _job(job_id: str, status: str = "queued", completed_at: str | None = None) -> JobRecord:
  return JobRecord(job_id=job_id, status=status, created_at="2026-01-01T00:00:00Z", updated_at="2026-01-01T00:00:00Z", prompt="p", model="sonar", temperature=0.2, max_tokens=100, completed_at=completed_at)  # type: ignore[arg-type]


@pytest.mark.anyio
async def test_update_goes_through_lifecycle_rules() -> None:
  repo = InMemoryJobsRepository()
  await repo.create_job(_job("job_1"))

  await repo.update_job("job_1", status="succeeded", result="OK", percent=100)
  updated = await repo.update_job("job_1", status="running", percent=5)

  assert updated.status == "succeeded"
  assert updated.percent == 100
  assert await repo.update_job("job_missing", status="running") is None


@pytest.mark.anyio
async def test_finished_jobs_are_kept_for_idempotent_lookups() -> None:
  repo = InMemoryJobsRepository()
  finished = replace(_job("job_old", "succeeded", "2026-01-01T00:00:00Z"), idempotency_key="K")
  await repo.create_job(finished)

  # Another submission long after the first finished must not evict it.
  await repo.create_job(_job("job_new"))

  assert await repo.get_job("job_old") == finished
  found = await repo.find_by_idempotency_key("K")
  assert found is not None
  assert found.job_id == "job_old"


@pytest.mark.anyio
async def test_report_updates_and_failed_listing() -> None:
  repo = InMemoryReportsRepository()
  repo.seed("org_reports", ReportRecord(id="r1"))
  repo.seed("greeting_reports", ReportRecord(id="g1", webhook_status="failed", webhook_attempts=3))

  updated = await repo.update_report("org_reports", "r1", webhook_status="failed", increment_attempts=True)

  assert updated.webhook_attempts == 1
  assert updated.research_status == "idle"
  assert await repo.list_failed_webhooks(max_attempts=3) == [("org_reports", updated)]
  assert await repo.update_report("org_reports", "missing", webhook_status="success") is None
  with pytest.raises(ValueError):
    await repo.get_report("podcast_reports", "p1")


@pytest.mark.parametrize(("report_type", "table"), [("org", "org_reports"), ("Organization", "org_reports"), ("requirements", "requirement_reports"), ("greeting", "greeting_reports"), ("podcast", None), (None, None)])
def test_report_type_mapping(report_type: str | None, table: str | None) -> None:
  assert report_table_for_type(report_type) == table


def test_table_to_report_type() -> None:
  assert report_type_for_table("requirement_reports") == "requirement"
