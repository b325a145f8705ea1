"""Inbound completion webhooks and manual re-delivery of stored report outcomes."""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from app.api.models import WebhookBatchRetryResponse, WebhookPayload, WebhookRetryRequest, WebhookRetryResponse
from app.config import Settings
from app.core.errors import PersistenceError
from app.jobs.factory import get_pipeline
from app.notifications.signing import verify
from app.notifications.webhook_notifier import CompletionNotifier
from app.services.request_validation import _format_validation_error, _parse_request
from app.storage.factory import _get_reports_repo
from app.storage.reports_repo import ReportRecord, ReportsRepository, WebhookAuditEntry, report_table_for_type, report_type_for_table
from app.utils.backoff import Sleep
from app.utils.timestamps import utc_now_iso

logger = logging.getLogger(__name__)

RETRY_USER_AGENT = "Polaris-Webhook-Retry/1.0"
_REQUIRED_FIELDS = ("job_id", "report_id", "report_type")
_BATCH_PAUSE_SECONDS = 0.1


@dataclass(frozen=True)
class WebhookReceipt:
  """HTTP status and JSON body the receiver answers with."""

  status_code: int
  body: dict[str, Any] = field(default_factory=dict)


class _ReceiverAudit:
  """Record every receiver outcome in ``webhook_audit`` without letting audit failures escape."""

  def __init__(self, repo: ReportsRepository, webhook_type: str) -> None:
    self._repo = repo
    self._webhook_type = webhook_type

  async def record(self, receipt: WebhookReceipt, payload: Any, *, job_id: str | None, report_id: str | None, table: str | None, error: str | None = None, attempt: int = 1) -> WebhookReceipt:
    entry = WebhookAuditEntry(
      webhook_type=self._webhook_type,
      job_id=job_id or "unknown",
      report_id=report_id,
      report_table=table,
      request_payload=payload,
      response_status=receipt.status_code,
      response_body=receipt.body,
      error_message=error,
      attempt_number=attempt,
    )
    try:
      await self._repo.record_audit(entry)
    except PersistenceError as exc:
      logger.error("Failed to audit %s webhook for job %s: %s", self._webhook_type, entry.job_id, exc)
    return receipt


def _str_field(payload: dict[str, Any], key: str) -> str | None:
  value = payload.get(key)
  return value if isinstance(value, str) and value else None


def _final_metadata(payload: WebhookPayload, webhook_type: str, now: str) -> dict[str, Any]:
  metadata: dict[str, Any] = {**(payload.research_metadata or {}), **(payload.final_data or {})}
  metadata.update({"webhook_updated": True, "webhook_timestamp": now, "webhook_type": webhook_type, "job_id": payload.job_id})
  if payload.error:
    metadata["error"] = payload.error
  if payload.research_status == "completed":
    metadata["final_completion"] = now
    metadata["processing_stage"] = "final"
  return metadata


async def receive_webhook(raw_body: bytes, signature: str | None, webhook_type: str, settings: Settings) -> WebhookReceipt:
  """Verify, validate and apply one completion webhook to its report row."""
  secret = settings.webhook.secret
  if not secret:
    logger.error("WEBHOOK_SECRET not configured; rejecting %s webhook", webhook_type)
    return WebhookReceipt(500, {"error": "Webhook not properly configured"})

  repo = _get_reports_repo(settings)
  audit = _ReceiverAudit(repo, webhook_type)

  try:
    payload = json.loads(raw_body)
  except ValueError:
    payload = None
  if not isinstance(payload, dict):
    receipt = WebhookReceipt(400, {"error": "Invalid JSON payload"})
    return await audit.record(receipt, raw_body.decode("utf-8", errors="replace")[:2000], job_id=None, report_id=None, table=None, error="Invalid JSON payload")

  job_id = _str_field(payload, "job_id")
  report_id = _str_field(payload, "report_id")

  # The signature covers the exact bytes received, never a re-serialization.
  if not verify(raw_body, signature, secret):
    logger.warning("Invalid webhook signature for job %s report %s", job_id, report_id)
    receipt = WebhookReceipt(401, {"error": "Invalid webhook signature"})
    return await audit.record(receipt, payload, job_id=job_id, report_id=report_id, table=None, error="Invalid webhook signature")

  if any(_str_field(payload, key) is None for key in _REQUIRED_FIELDS):
    receipt = WebhookReceipt(400, {"error": f"Missing required fields: {', '.join(_REQUIRED_FIELDS)}"})
    return await audit.record(receipt, payload, job_id=job_id, report_id=report_id, table=None, error="Missing required fields")

  try:
    parsed = WebhookPayload.model_validate(payload)
  except ValidationError as exc:
    receipt = WebhookReceipt(400, {"error": f"Invalid webhook payload: {_format_validation_error(exc)}"})
    return await audit.record(receipt, payload, job_id=job_id, report_id=report_id, table=None, error="Invalid webhook payload")

  table = report_table_for_type(parsed.report_type)
  if table is None:
    receipt = WebhookReceipt(400, {"error": f"Invalid report_type: {parsed.report_type}"})
    return await audit.record(receipt, payload, job_id=parsed.job_id, report_id=parsed.report_id, table=None, error="Invalid report type")

  try:
    existing = await repo.get_report(table, parsed.report_id)
  except PersistenceError as exc:
    return await _receiver_failure(repo, audit, payload, parsed, table, str(exc), record_status=False)

  if existing is None:
    receipt = WebhookReceipt(404, {"error": "Report not found"})
    return await audit.record(receipt, payload, job_id=parsed.job_id, report_id=parsed.report_id, table=table, error="Report not found")

  attempt = existing.webhook_attempts + 1
  if existing.webhook_status == "success" and existing.research_status == "completed":
    receipt = WebhookReceipt(200, {"message": "Final webhook already processed successfully", "report_id": parsed.report_id, "status": "already_completed"})
    return await audit.record(receipt, payload, job_id=parsed.job_id, report_id=parsed.report_id, table=table, attempt=attempt)

  now = utc_now_iso()
  try:
    await repo.update_report(
      table,
      parsed.report_id,
      research_report=parsed.research_report or "",
      research_status=parsed.research_status,
      research_metadata=_final_metadata(parsed, webhook_type, now),
      webhook_status="failed" if parsed.error else "success",
      webhook_job_id=parsed.job_id,
      webhook_last_attempt=now,
      webhook_response={"message": "Final report updated successfully", "completed_at": now, "processing_stage": "final"},
      increment_attempts=True,
    )
  except PersistenceError as exc:
    return await _receiver_failure(repo, audit, payload, parsed, table, str(exc), record_status=True)

  if parsed.research_status == "completed":
    logger.info("Final report completed: %s report %s from job %s", parsed.report_type, parsed.report_id, parsed.job_id)

  body = {
    "message": "Final report updated successfully",
    "report_id": parsed.report_id,
    "job_id": parsed.job_id,
    "report_type": parsed.report_type,
    "status": parsed.research_status,
    "timestamp": now,
    "processing_stage": "final",
  }
  return await audit.record(WebhookReceipt(200, body), payload, job_id=parsed.job_id, report_id=parsed.report_id, table=table, attempt=attempt)


async def _receiver_failure(repo: ReportsRepository, audit: _ReceiverAudit, payload: dict[str, Any], parsed: WebhookPayload, table: str, message: str, *, record_status: bool) -> WebhookReceipt:
  logger.error("Webhook processing failed for job %s report %s: %s", parsed.job_id, parsed.report_id, message)
  if record_status:
    try:
      await repo.update_report(table, parsed.report_id, webhook_status="failed", webhook_response={"error": message, "failed_at": utc_now_iso(), "processing_stage": "final"}, increment_attempts=True)
    except PersistenceError as exc:
      logger.error("Failed to record webhook failure for %s/%s: %s", table, parsed.report_id, exc)
  receipt = WebhookReceipt(500, {"error": "Failed to process final report webhook", "message": message, "job_id": parsed.job_id, "report_id": parsed.report_id})
  return await audit.record(receipt, payload, job_id=parsed.job_id, report_id=parsed.report_id, table=table, error=message)


def _retry_payload(table: str, report: ReportRecord) -> dict[str, Any]:
  return {
    "job_id": report.webhook_job_id,
    "report_id": report.id,
    "report_type": report_type_for_table(table),
    "research_report": report.research_report or "",
    "research_status": report.research_status if report.research_status in {"completed", "failed"} else "completed",
    "research_metadata": report.research_metadata or {},
    "retry_attempt": True,
  }


async def _resend(table: str, report_id: str, webhook_type: str, settings: Settings, repo: ReportsRepository, notifier: CompletionNotifier) -> WebhookRetryResponse:
  if not notifier.enabled:
    return WebhookRetryResponse(success=False, error="Configuration missing")

  try:
    report = await repo.get_report(table, report_id)
  except PersistenceError as exc:
    return WebhookRetryResponse(success=False, error=f"Report not found: {exc}")
  if report is None:
    return WebhookRetryResponse(success=False, error="Report not found")

  if not report.webhook_job_id or report.webhook_attempts >= settings.webhook.manual_retry_limit:
    return WebhookRetryResponse(success=False, error="Retry not allowed (max attempts reached or no job ID)")

  url = f"{settings.webhook.base_url.rstrip('/')}/api/webhooks/{webhook_type}"
  logger.info("Retrying webhook for %s:%s -> %s", table, report_id, url)
  delivery = await notifier.send_signed(_retry_payload(table, report), url=url, max_retries=0, user_agent=RETRY_USER_AGENT)

  now = utc_now_iso()
  if delivery.delivered:
    status_update: dict[str, Any] = {"webhook_status": "success", "webhook_response": {"message": "Retry successful", "retry_completed": True, "completed_at": now}}
    result = WebhookRetryResponse(success=True, message="Webhook retry completed successfully", response=delivery.response_body)
  else:
    error = f"Webhook failed: HTTP {delivery.status_code}" if delivery.status_code else (delivery.error or "Retry failed")
    status_update = {"webhook_status": "failed", "webhook_response": {"error": delivery.error or error, "retry_failed": True, "failed_at": now}}
    result = WebhookRetryResponse(success=False, error=error, response=delivery.response_body)

  try:
    await repo.update_report(table, report_id, webhook_last_attempt=now, increment_attempts=True, **status_update)
  except PersistenceError as exc:
    logger.error("Failed to record retry outcome for %s:%s: %s", table, report_id, exc)
  return result


async def retry_report_webhook(payload: Any, settings: Settings) -> WebhookRetryResponse:
  """Re-send the stored outcome of one report as a signed webhook, once."""
  request = _parse_request(WebhookRetryRequest, payload, invalid_message="Missing required fields: report_type, report_id")
  table = report_table_for_type(request.report_type)
  if table is None:
    return WebhookRetryResponse(success=False, error=f"Invalid report_type: {request.report_type}")
  return await _resend(table, request.report_id, request.webhook_type, settings, _get_reports_repo(settings), get_pipeline(settings).notifier)


async def retry_failed_webhooks(settings: Settings, *, webhook_type: str = "final-report", sleep: Sleep = asyncio.sleep) -> WebhookBatchRetryResponse:
  """Re-send every failed webhook that still has retry budget."""
  repo = _get_reports_repo(settings)
  notifier = get_pipeline(settings).notifier
  try:
    candidates = await repo.list_failed_webhooks(max_attempts=settings.webhook.manual_retry_limit)
  except PersistenceError as exc:
    return WebhookBatchRetryResponse(processed=0, successes=0, failures=0, errors=[str(exc)])

  successes = 0
  failures = 0
  errors: list[str] = []
  if candidates:
    logger.info("Processing %d failed webhooks", len(candidates))

  for index, (table, report) in enumerate(candidates):
    if index:
      await sleep(_BATCH_PAUSE_SECONDS)
    result = await _resend(table, report.id, webhook_type, settings, repo, notifier)
    if result.success:
      successes += 1
      continue
    failures += 1
    if result.error:
      errors.append(f"{table}:{report.id} - {result.error}")

  logger.info("Webhook retry batch completed: %d successes, %d failures", successes, failures)
  return WebhookBatchRetryResponse(processed=len(candidates), successes=successes, failures=failures, errors=errors)
