"""Storage interfaces for report records that receive research results."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Final, Literal, Protocol

ResearchStatus = Literal["idle", "running", "completed", "failed"]
WebhookStatus = Literal["pending", "retrying", "success", "failed"]

REPORT_TABLES: Final[tuple[str, ...]] = ("greeting_reports", "org_reports", "requirement_reports")

_TABLE_BY_TYPE: Final[dict[str, str]] = {
  "greeting": "greeting_reports",
  "org": "org_reports",
  "organization": "org_reports",
  "requirement": "requirement_reports",
  "requirements": "requirement_reports",
}


def report_table_for_type(report_type: str | None) -> str | None:
  """Map a caller-facing report type to its table, or None when unknown."""
  if not report_type:
    return None
  return _TABLE_BY_TYPE.get(str(report_type).strip().lower())


def report_type_for_table(table: str) -> str:
  return table.removesuffix("_reports")


@dataclass
class ReportRecord:
  """A report row as seen by the notification pipeline."""

  id: str
  research_status: ResearchStatus = "idle"
  research_report: str | None = None
  research_metadata: dict[str, Any] = field(default_factory=dict)
  webhook_status: WebhookStatus = "pending"
  webhook_job_id: str | None = None
  webhook_attempts: int = 0
  webhook_last_attempt: str | None = None
  webhook_response: dict[str, Any] | None = None
  user_id: str | None = None


@dataclass(frozen=True)
class WebhookAuditEntry:
  """One inbound webhook call as recorded in ``webhook_audit``."""

  webhook_type: str
  job_id: str
  report_id: str | None
  report_table: str | None
  request_payload: Any
  response_status: int
  response_body: dict[str, Any] | None
  error_message: str | None
  attempt_number: int


class ReportsRepository(Protocol):
  """Repository contract for report persistence."""

  async def get_report(self, table: str, report_id: str) -> ReportRecord | None:
    """Fetch one report row."""

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
    """Apply a partial update; ``research_metadata`` replaces the stored value."""

  async def list_failed_webhooks(self, *, max_attempts: int) -> list[tuple[str, ReportRecord]]:
    """Return (table, report) pairs whose webhook failed and may be retried."""

  async def record_audit(self, entry: WebhookAuditEntry) -> None:
    """Persist one webhook audit row."""
