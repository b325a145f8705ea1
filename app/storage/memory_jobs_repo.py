"""Process-local job repository used when no database is configured."""

from __future__ import annotations

from typing import Any

from app.jobs.models import JobRecord, JobStatus
from app.jobs.transitions import apply_job_update
from app.storage.jobs_repo import JobsRepository
from app.utils.timestamps import utc_now_iso


class InMemoryJobsRepository(JobsRepository):
  """Keep jobs in a dict; contents are lost on restart and never evicted before that."""

  def __init__(self) -> None:
    self._jobs: dict[str, JobRecord] = {}

  async def create_job(self, record: JobRecord) -> None:
    self._jobs[record.job_id] = record

  async def get_job(self, job_id: str) -> JobRecord | None:
    return self._jobs.get(job_id)

  async def update_job(
    self,
    job_id: str,
    *,
    status: JobStatus | None = None,
    percent: int | None = None,
    eta_seconds: int | None = None,
    result: str | None = None,
    error: str | None = None,
    metadata: dict[str, Any] | None = None,
    started_at: str | None = None,
    completed_at: str | None = None,
  ) -> JobRecord | None:
    record = self._jobs.get(job_id)
    if record is None:
      return None
    changes = {"status": status, "percent": percent, "eta_seconds": eta_seconds, "result": result, "error": error, "metadata": metadata, "started_at": started_at, "completed_at": completed_at}
    updated = apply_job_update(record, changes, now=utc_now_iso())
    self._jobs[job_id] = updated
    return updated

  async def find_by_idempotency_key(self, idempotency_key: str) -> JobRecord | None:
    matches = [record for record in self._jobs.values() if record.idempotency_key == idempotency_key]
    if not matches:
      return None
    return min(matches, key=lambda record: record.created_at)
