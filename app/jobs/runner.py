"""Drive one report job from queued to a terminal state."""

from __future__ import annotations

import logging
import math
from typing import Any

from app.ai.fallback import FallbackFailed, ProviderFallbackChain
from app.ai.model_routing import effective_timeout_ms, normalize_model
from app.ai.prompts import RESEARCH_SYSTEM_PROMPT
from app.ai.providers.base import ChatMessage, ChatOptions
from app.config import Settings
from app.core.errors import JobStoreError, PersistenceError
from app.jobs.models import JobRecord, ReportOutcome
from app.jobs.progress import PROGRESS_AFTER_DISPATCH, PROGRESS_AFTER_RESPONSE, PROGRESS_COMPLETE, PROGRESS_STARTED
from app.notifications.webhook_notifier import CompletionNotifier
from app.storage.jobs_repo import JobsRepository
from app.storage.reports_repo import ReportsRepository, report_table_for_type
from app.utils.timestamps import utc_now_iso

logger = logging.getLogger(__name__)


class JobRunner:
  """Execute a queued job: call the provider chain, store the outcome, notify.

  The model call is never retried here; a failed chain is terminal for the job.
  Intermediate progress writes are best effort.
  """

  def __init__(self, settings: Settings, jobs_repo: JobsRepository, chain: ProviderFallbackChain, notifier: CompletionNotifier, reports_repo: ReportsRepository | None = None) -> None:
    self._settings = settings
    self._jobs_repo = jobs_repo
    self._chain = chain
    self._notifier = notifier
    self._reports_repo = reports_repo

  def timeout_for(self, model: str) -> int:
    """Per-attempt provider timeout for ``model`` on the primary provider."""
    primary = self._settings.provider(self._chain.order[0])
    return effective_timeout_ms(model, primary.timeout_ms, factor=self._settings.reasoning_timeout_factor, cap_ms=self._settings.reasoning_timeout_cap_ms)

  async def run(self, job_id: str) -> None:
    try:
      record = await self._jobs_repo.get_job(job_id)
    except JobStoreError:
      logger.error("Job %s could not be loaded; leaving it for inspection", job_id, exc_info=True)
      return

    if record is None:
      logger.warning("Job %s not found; nothing to run", job_id)
      return
    if record.status != "queued":
      logger.info("Job %s is %s; skipping", job_id, record.status)
      return

    try:
      await self._execute(record)
    except Exception:
      # Leave the job in a terminal state before the dispatcher logs the crash.
      await self._finish_failed(record, "Internal error while running job")
      raise

  async def _execute(self, record: JobRecord) -> None:
    job_id = record.job_id
    await self._progress(job_id, status="running", percent=PROGRESS_STARTED, started_at=utc_now_iso())
    await self._mark_report_running(record)

    primary = self._chain.order[0]
    model = normalize_model(primary, record.model, self._settings.provider(primary).model)
    timeout_ms = self.timeout_for(model)
    messages: list[ChatMessage] = [{"role": "system", "content": RESEARCH_SYSTEM_PROMPT}, {"role": "user", "content": record.prompt}]
    options = ChatOptions(temperature=record.temperature, max_tokens=record.max_tokens, timeout_ms=timeout_ms, model=model)

    await self._progress(job_id, percent=PROGRESS_AFTER_DISPATCH, eta_seconds=math.ceil(timeout_ms / 1000))
    logger.info("Job %s calling chain primary=%s model=%s timeout_ms=%d", job_id, primary, model, timeout_ms)
    result = await self._chain.call_with_fallback(messages, options)

    if isinstance(result, FallbackFailed):
      await self._finish_failed(record, result.message)
      return

    await self._progress(job_id, percent=PROGRESS_AFTER_RESPONSE)
    content = result.content.strip()
    completed_at = utc_now_iso()
    provenance: dict[str, Any] = {"model_used": result.model_used, "provider_used": result.provider_used}
    if result.usage:
      provenance["usage"] = result.usage
    try:
      await self._jobs_repo.update_job(job_id, status="succeeded", result=content, percent=PROGRESS_COMPLETE, eta_seconds=0, completed_at=completed_at, metadata=provenance)
    except JobStoreError as exc:
      logger.error("Job %s succeeded upstream but the result could not be stored", job_id, exc_info=True)
      await self._finish_failed(record, f"Failed to persist result: {exc}")
      return

    logger.info("Job %s succeeded via %s (%s), %d chars", job_id, result.provider_used, result.model_used, len(content))
    await self._notify(record, content, "completed", {"model": result.model_used, "provider": result.provider_used, "completed_at": completed_at})

  async def _finish_failed(self, record: JobRecord, message: str) -> None:
    completed_at = utc_now_iso()
    logger.warning("Job %s failed: %s", record.job_id, message)
    try:
      await self._jobs_repo.update_job(record.job_id, status="failed", error=message, percent=PROGRESS_COMPLETE, completed_at=completed_at)
    except JobStoreError:
      logger.error("Job %s failure could not be stored", record.job_id, exc_info=True)
    await self._notify(record, "", "failed", {"completed_at": completed_at}, error_message=message)

  async def _progress(self, job_id: str, **fields: Any) -> None:
    try:
      await self._jobs_repo.update_job(job_id, **fields)
    except JobStoreError as exc:
      logger.warning("Progress update for job %s failed (%s); continuing", job_id, exc)

  async def _mark_report_running(self, record: JobRecord) -> None:
    table = report_table_for_type(record.report_type)
    if self._reports_repo is None or table is None or not record.report_id:
      return
    try:
      await self._reports_repo.update_report(table, record.report_id, research_status="running", webhook_job_id=record.job_id)
    except (PersistenceError, ValueError) as exc:
      logger.warning("Could not mark report %s/%s running: %s", table, record.report_id, exc)

  async def _notify(self, record: JobRecord, content: str, outcome: ReportOutcome, metadata: dict[str, Any], *, error_message: str | None = None) -> None:
    if not record.report_id or not record.report_type:
      return
    try:
      result = await self._notifier.notify(record.job_id, record.report_id, record.report_type, content, outcome, metadata, error_message)
    except Exception:  # noqa: BLE001
      # Notification problems never change the job's stored outcome.
      logger.error("Completion notification crashed for job %s", record.job_id, exc_info=True)
      return
    logger.info("Job %s notification success=%s used_webhook=%s attempts=%d", record.job_id, result.success, result.used_webhook, result.attempts)
