"""Signed completion webhooks with bounded exponential-backoff retry."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from typing import Any

import httpx

from app.config import WebhookSettings
from app.core.errors import NotificationDeliveryError
from app.jobs.models import ReportOutcome
from app.notifications.fallback_persister import FallbackPersister
from app.notifications.signing import SIGNATURE_HEADER, serialize_payload, sign
from app.storage.reports_repo import report_table_for_type
from app.utils.backoff import Sleep, retry_with_backoff

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeliveryOutcome:
  delivered: bool
  attempts: int
  status_code: int | None = None
  response_body: Any = None
  error: str | None = None


@dataclass(frozen=True)
class NotifyResult:
  success: bool
  used_webhook: bool
  attempts: int
  last_error: str | None = None
  persisted: bool = False


def build_payload(job_id: str, report_id: str, report_type: str, content: str, outcome: ReportOutcome, metadata: dict[str, Any], error_message: str | None = None) -> dict[str, Any]:
  payload: dict[str, Any] = {
    "job_id": job_id,
    "report_id": report_id,
    "report_type": report_type,
    "research_report": content,
    "research_status": outcome,
    "research_metadata": metadata,
  }
  if error_message:
    payload["error"] = error_message
  return payload


def _response_body(response: httpx.Response) -> Any:
  try:
    return response.json()
  except ValueError:
    return response.text[:500]


class CompletionNotifier:
  """Deliver job outcomes to the report webhook, falling back to direct persistence."""

  def __init__(self, webhook: WebhookSettings, *, persister: FallbackPersister | None = None, http_client: httpx.AsyncClient | None = None, sleep: Sleep = asyncio.sleep) -> None:
    self._webhook = webhook
    self._persister = persister
    self._http_client = http_client
    self._sleep = sleep

  @property
  def enabled(self) -> bool:
    return bool(self._webhook.secret)

  async def _post_once(self, client: httpx.AsyncClient, url: str, body: bytes, headers: dict[str, str]) -> httpx.Response:
    timeout_s = self._webhook.timeout_ms / 1000
    try:
      # Bound the whole attempt, not just individual socket operations.
      async with asyncio.timeout(timeout_s):
        response = await client.post(url, content=body, headers=headers)
    except TimeoutError as exc:
      raise NotificationDeliveryError(f"timed out after {self._webhook.timeout_ms}ms") from exc
    except httpx.HTTPError as exc:
      raise NotificationDeliveryError(f"network error: {exc}") from exc

    if not 200 <= response.status_code < 300:
      raise NotificationDeliveryError(f"HTTP {response.status_code}: {_response_body(response)}", status_code=response.status_code)
    return response

  async def send_signed(self, payload: dict[str, Any], *, url: str | None = None, max_retries: int | None = None, user_agent: str | None = None) -> DeliveryOutcome:
    """Sign ``payload`` and POST it, retrying non-2xx and network failures."""
    if not self._webhook.secret:
      return DeliveryOutcome(delivered=False, attempts=0, error="WEBHOOK_SECRET not configured")

    body = serialize_payload(payload)
    headers = {"Content-Type": "application/json", SIGNATURE_HEADER: sign(body, self._webhook.secret), "User-Agent": user_agent or self._webhook.user_agent}
    target = url or self._webhook.url
    retries = self._webhook.max_retries if max_retries is None else max_retries
    attempts = 0
    last_status: int | None = None

    def _on_retry(attempt: int, exc: Exception, delay_ms: int) -> None:
      logger.warning("Webhook attempt %d/%d to %s failed: %s. Retrying in %dms", attempt, retries + 1, target, exc, delay_ms)

    async with self._client_context() as client:

      async def _attempt() -> httpx.Response:
        nonlocal attempts, last_status
        attempts += 1
        try:
          return await self._post_once(client, target, body, headers)
        except NotificationDeliveryError as exc:
          last_status = exc.status_code
          raise

      try:
        response = await retry_with_backoff(_attempt, max_retries=retries, should_retry=lambda exc: isinstance(exc, NotificationDeliveryError), sleep=self._sleep, on_retry=_on_retry)
      except NotificationDeliveryError as exc:
        logger.error("Webhook delivery to %s exhausted after %d attempt(s): %s", target, attempts, exc)
        return DeliveryOutcome(delivered=False, attempts=attempts, status_code=last_status, error=str(exc))

    logger.info("Webhook delivered to %s after %d attempt(s) status=%s", target, attempts, response.status_code)
    return DeliveryOutcome(delivered=True, attempts=attempts, status_code=response.status_code, response_body=_response_body(response))

  async def notify(self, job_id: str, report_id: str, report_type: str, content: str, outcome: ReportOutcome, metadata: dict[str, Any], error_message: str | None = None) -> NotifyResult:
    """Deliver the outcome by webhook; on exhaustion write it directly to the report."""
    delivery_metadata = {**metadata, "job_id": job_id}
    if not self.enabled:
      # Never send an unsigned callback.
      logger.warning("WEBHOOK_SECRET not configured; skipping webhook for job %s", job_id)
      outcome_info = DeliveryOutcome(delivered=False, attempts=0, error="WEBHOOK_SECRET not configured")
    else:
      payload = build_payload(job_id, report_id, report_type, content, outcome, delivery_metadata, error_message)
      outcome_info = await self.send_signed(payload)

    if outcome_info.delivered:
      return NotifyResult(success=True, used_webhook=True, attempts=outcome_info.attempts)

    persisted = await self._persist_fallback(job_id, report_id, report_type, content, outcome, delivery_metadata, error_message)
    return NotifyResult(success=persisted, used_webhook=False, attempts=outcome_info.attempts, last_error=outcome_info.error, persisted=persisted)

  async def _persist_fallback(self, job_id: str, report_id: str, report_type: str, content: str, outcome: ReportOutcome, metadata: dict[str, Any], error_message: str | None) -> bool:
    if self._persister is None:
      logger.error("No fallback persister configured; outcome for job %s is only in the job store", job_id)
      return False
    table = report_table_for_type(report_type)
    if table is None:
      logger.error("Cannot persist job %s: unknown report_type %r", job_id, report_type)
      return False
    result = await self._persister.write_directly(table, report_id, content, outcome, metadata, error_message)
    return result.success

  def _client_context(self) -> Any:
    if self._http_client is not None:
      return contextlib.nullcontext(self._http_client)
    # Never trust environment proxy variables for internal callbacks.
    return httpx.AsyncClient(trust_env=False)
