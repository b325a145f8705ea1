"""Postgres-backed repository for report jobs using SQLAlchemy."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.database import get_session_factory
from app.core.errors import JobStoreError
from app.jobs.models import JobRecord, JobStatus
from app.jobs.transitions import apply_job_update
from app.schema.sql import ReportJob
from app.storage.jobs_repo import JobsRepository
from app.utils.timestamps import utc_now_iso

logger = logging.getLogger(__name__)


def _store_error(action: str, job_id: str, exc: SQLAlchemyError) -> JobStoreError:
  # Constraint violations will not succeed on retry.
  retryable = not isinstance(exc, IntegrityError)
  logger.error("Job store failed to %s job %s: %s", action, job_id, exc)
  return JobStoreError(f"Failed to {action} job {job_id}", retryable=retryable)


class PostgresJobsRepository(JobsRepository):
  """Persist report jobs to Postgres using SQLAlchemy."""

  def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
    self._session_factory = session_factory or get_session_factory()
    if self._session_factory is None:
      raise RuntimeError("Database not initialized")

  async def create_job(self, record: JobRecord) -> None:
    try:
      async with self._session_factory() as session:
        session.add(self._record_to_model(record))
        await session.commit()
    except SQLAlchemyError as exc:
      raise _store_error("create", record.job_id, exc) from exc

  async def get_job(self, job_id: str) -> JobRecord | None:
    try:
      async with self._session_factory() as session:
        row = await session.get(ReportJob, job_id)
        return self._model_to_record(row) if row is not None else None
    except SQLAlchemyError as exc:
      raise _store_error("read", job_id, exc) from exc

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
    changes = {"status": status, "percent": percent, "eta_seconds": eta_seconds, "result": result, "error": error, "metadata": metadata, "started_at": started_at, "completed_at": completed_at}
    try:
      async with self._session_factory() as session:
        # Lock the row so concurrent writers see each other's lifecycle changes.
        stmt = select(ReportJob).where(ReportJob.job_id == job_id).with_for_update()
        row = (await session.execute(stmt)).scalar_one_or_none()
        if row is None:
          return None
        updated = apply_job_update(self._model_to_record(row), changes, now=utc_now_iso())
        self._copy_mutable_fields(updated, row)
        await session.commit()
        return updated
    except SQLAlchemyError as exc:
      raise _store_error("update", job_id, exc) from exc

  async def find_by_idempotency_key(self, idempotency_key: str) -> JobRecord | None:
    try:
      async with self._session_factory() as session:
        stmt = select(ReportJob).where(ReportJob.idempotency_key == idempotency_key).order_by(ReportJob.created_at.asc()).limit(1)
        row = (await session.execute(stmt)).scalar_one_or_none()
        return self._model_to_record(row) if row is not None else None
    except SQLAlchemyError as exc:
      raise _store_error("look up idempotency key for", idempotency_key, exc) from exc

  def _record_to_model(self, record: JobRecord) -> ReportJob:
    return ReportJob(
      job_id=record.job_id,
      status=record.status,
      percent=record.percent,
      eta_seconds=record.eta_seconds,
      prompt=record.prompt,
      model=record.model,
      temperature=record.temperature,
      max_tokens=record.max_tokens,
      result=record.result,
      error=record.error,
      idempotency_key=record.idempotency_key,
      user_id=record.user_id,
      summary_id=record.summary_id,
      metadata_json=record.metadata,
      created_at=record.created_at,
      updated_at=record.updated_at,
      started_at=record.started_at,
      completed_at=record.completed_at,
    )

  def _copy_mutable_fields(self, record: JobRecord, row: ReportJob) -> None:
    row.status = record.status
    row.percent = record.percent
    row.eta_seconds = record.eta_seconds
    row.result = record.result
    row.error = record.error
    row.metadata_json = record.metadata
    row.started_at = record.started_at
    row.completed_at = record.completed_at
    row.updated_at = record.updated_at

  def _model_to_record(self, row: ReportJob) -> JobRecord:
    return JobRecord(
      job_id=row.job_id,
      status=row.status,  # type: ignore[arg-type]
      created_at=row.created_at,
      updated_at=row.updated_at,
      prompt=row.prompt,
      model=row.model,
      temperature=row.temperature,
      max_tokens=row.max_tokens,
      percent=row.percent,
      eta_seconds=row.eta_seconds,
      result=row.result,
      error=row.error,
      idempotency_key=row.idempotency_key,
      user_id=row.user_id,
      summary_id=row.summary_id,
      metadata=dict(row.metadata_json or {}),
      started_at=row.started_at,
      completed_at=row.completed_at,
    )
