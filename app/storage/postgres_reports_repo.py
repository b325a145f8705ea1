"""Postgres-backed repository for report rows and webhook audits."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.database import get_session_factory
from app.core.errors import ReportStoreError
from app.schema.sql import REPORT_MODELS, WebhookAudit
from app.storage.reports_repo import ReportRecord, ReportsRepository, ResearchStatus, WebhookAuditEntry, WebhookStatus

logger = logging.getLogger(__name__)


class PostgresReportsRepository(ReportsRepository):
  """Read and update report tables through SQLAlchemy."""

  def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
    self._session_factory = session_factory or get_session_factory()
    if self._session_factory is None:
      raise RuntimeError("Database not initialized")

  async def get_report(self, table: str, report_id: str) -> ReportRecord | None:
    model = self._model(table)
    try:
      async with self._session_factory() as session:
        row = await session.get(model, report_id)
        return self._to_record(row) if row is not None else None
    except SQLAlchemyError as exc:
      logger.error("Failed to read %s/%s: %s", table, report_id, exc)
      raise ReportStoreError(f"Failed to read report {report_id}") from exc

  async def update_report(
    self,
    table: str,
    report_id: str,
    *,
    research_status: ResearchStatus | None = None,
    research_report: str | None = None,
    research_metadata: dict[str, Any] | None = None,
    webhook_status: WebhookStatus | None = None,
    webhook_job_id: str | None = None,
    webhook_last_attempt: str | None = None,
    webhook_response: dict[str, Any] | None = None,
    increment_attempts: bool = False,
  ) -> ReportRecord | None:
    model = self._model(table)
    changes = {
      "research_status": research_status,
      "research_report": research_report,
      "research_metadata": research_metadata,
      "webhook_status": webhook_status,
      "webhook_job_id": webhook_job_id,
      "webhook_last_attempt": webhook_last_attempt,
      "webhook_response": webhook_response,
    }
    try:
      async with self._session_factory() as session:
        stmt = select(model).where(model.id == report_id).with_for_update()
        row = (await session.execute(stmt)).scalar_one_or_none()
        if row is None:
          return None
        for key, value in changes.items():
          if value is not None:
            setattr(row, key, value)
        if increment_attempts:
          row.webhook_attempts = (row.webhook_attempts or 0) + 1
        await session.commit()
        return self._to_record(row)
    except SQLAlchemyError as exc:
      logger.error("Failed to update %s/%s: %s", table, report_id, exc)
      raise ReportStoreError(f"Failed to update report {report_id}") from exc

  async def list_failed_webhooks(self, *, max_attempts: int) -> list[tuple[str, ReportRecord]]:
    pending: list[tuple[str, ReportRecord]] = []
    try:
      async with self._session_factory() as session:
        for table, model in REPORT_MODELS.items():
          stmt = select(model).where(model.webhook_status.in_(("failed", "retrying")), model.webhook_attempts < max_attempts)
          rows = (await session.execute(stmt)).scalars().all()
          pending.extend((table, self._to_record(row)) for row in rows)
    except SQLAlchemyError as exc:
      logger.error("Failed to list failed webhooks: %s", exc)
      raise ReportStoreError("Failed to list failed webhooks") from exc
    return pending

  async def record_audit(self, entry: WebhookAuditEntry) -> None:
    try:
      async with self._session_factory() as session:
        session.add(
          WebhookAudit(
            webhook_type=entry.webhook_type,
            job_id=entry.job_id,
            report_id=entry.report_id,
            report_table=entry.report_table,
            request_payload=entry.request_payload if isinstance(entry.request_payload, dict) else {"raw": str(entry.request_payload)},
            response_status=entry.response_status,
            response_body=entry.response_body,
            error_message=entry.error_message,
            attempt_number=entry.attempt_number,
          )
        )
        await session.commit()
    except SQLAlchemyError as exc:
      raise ReportStoreError("Failed to record webhook audit") from exc

  def _model(self, table: str):  # type: ignore[no-untyped-def]
    try:
      return REPORT_MODELS[table]
    except KeyError as exc:
      raise ValueError(f"Unknown report table '{table}'.") from exc

  def _to_record(self, row: Any) -> ReportRecord:
    return ReportRecord(
      id=row.id,
      research_status=row.research_status,
      research_report=row.research_report,
      research_metadata=dict(row.research_metadata or {}),
      webhook_status=row.webhook_status,
      webhook_job_id=row.webhook_job_id,
      webhook_attempts=row.webhook_attempts or 0,
      webhook_last_attempt=row.webhook_last_attempt,
      webhook_response=row.webhook_response,
      user_id=row.user_id,
    )
