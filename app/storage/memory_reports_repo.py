"""Process-local report repository for development and tests."""

from __future__ import annotations

from dataclasses import replace
from typing import Any

from app.storage.reports_repo import REPORT_TABLES, ReportRecord, ReportsRepository, ResearchStatus, WebhookAuditEntry, WebhookStatus


class InMemoryReportsRepository(ReportsRepository):
  """Keep report rows and webhook audits in dicts keyed by table."""

  def __init__(self) -> None:
    self._tables: dict[str, dict[str, ReportRecord]] = {table: {} for table in REPORT_TABLES}
    self.audits: list[WebhookAuditEntry] = []

  def seed(self, table: str, record: ReportRecord) -> None:
    self._table(table)[record.id] = record

  async def get_report(self, table: str, report_id: str) -> ReportRecord | None:
    return self._table(table).get(report_id)

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
    rows = self._table(table)
    record = rows.get(report_id)
    if record is None:
      return None
    changes = {
      "research_status": research_status,
      "research_report": research_report,
      "research_metadata": dict(research_metadata) if research_metadata is not None else None,
      "webhook_status": webhook_status,
      "webhook_job_id": webhook_job_id,
      "webhook_last_attempt": webhook_last_attempt,
      "webhook_response": webhook_response,
    }
    updated = replace(record, **{key: value for key, value in changes.items() if value is not None})
    if increment_attempts:
      updated.webhook_attempts += 1
    rows[report_id] = updated
    return updated

  async def list_failed_webhooks(self, *, max_attempts: int) -> list[tuple[str, ReportRecord]]:
    return [(table, record) for table, rows in self._tables.items() for record in rows.values() if record.webhook_status in {"failed", "retrying"} and record.webhook_attempts < max_attempts]

  async def record_audit(self, entry: WebhookAuditEntry) -> None:
    self.audits.append(entry)

  def _table(self, table: str) -> dict[str, ReportRecord]:
    try:
      return self._tables[table]
    except KeyError as exc:
      raise ValueError(f"Unknown report table '{table}'.") from exc
