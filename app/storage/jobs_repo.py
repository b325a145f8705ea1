"""Storage interfaces for report jobs."""

from __future__ import annotations

from typing import Any, Protocol

from app.jobs.models import JobRecord, JobStatus


class JobsRepository(Protocol):
  """Repository contract for job persistence.

  Implementations raise ``JobStoreError`` when the backend fails and apply updates
  through ``app.jobs.transitions.apply_job_update`` so lifecycle rules hold.
  """

  async def create_job(self, record: JobRecord) -> None:
    """Persist an initial job record."""

  async def get_job(self, job_id: str) -> JobRecord | None:
    """Fetch a job by identifier."""

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
    """Apply partial updates to a job, returning the stored record or None when unknown."""

  async def find_by_idempotency_key(self, idempotency_key: str) -> JobRecord | None:
    """Return a job created with a given idempotency key, if present."""
