"""Direct report persistence used when webhook delivery is exhausted."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from app.core.errors import PersistenceError
from app.jobs.models import ReportOutcome
from app.storage.reports_repo import ReportsRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PersistResult:
  success: bool
  error: str | None = None


class FallbackPersister:
  """Write a job outcome straight onto its report row.

  The written fields depend only on the arguments, so repeating a call leaves the
  row unchanged.
  """

  def __init__(self, reports_repo: ReportsRepository) -> None:
    self._reports_repo = reports_repo

  async def write_directly(self, report_table: str, report_id: str, content: str, outcome: ReportOutcome, metadata: dict[str, Any], error_message: str | None = None) -> PersistResult:
    research_metadata: dict[str, Any] = {**metadata, "fallback_persisted": True, "webhook_delivered": False}
    if error_message:
      research_metadata["error"] = error_message

    try:
      updated = await self._reports_repo.update_report(
        report_table,
        report_id,
        research_report=content,
        research_status=outcome,
        research_metadata=research_metadata,
        webhook_status="failed",
        webhook_job_id=metadata.get("job_id"),
      )
    except (PersistenceError, ValueError) as exc:
      logger.error("Fallback persistence failed for %s/%s: %s", report_table, report_id, exc, exc_info=True)
      return PersistResult(success=False, error=str(exc))

    if updated is None:
      logger.error("Fallback persistence found no report %s/%s", report_table, report_id)
      return PersistResult(success=False, error="Report not found")

    logger.info("Fallback persisted %s outcome for %s/%s", outcome, report_table, report_id)
    return PersistResult(success=True)
