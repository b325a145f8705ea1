import asyncio
import logging
from typing import Any

from app.api.models import JobCreateResponse, JobStatusResponse, ReportJobRequest
from app.config import Settings
from app.core.errors import JobStoreError, RequestValidationFailed, ResourceNotFound
from app.jobs.factory import _get_dispatcher
from app.jobs.idempotency import IdempotencyLedger
from app.jobs.models import JobRecord
from app.services.request_validation import _parse_request
from app.storage.factory import _get_jobs_repo
from app.utils.ids import generate_job_id
from app.utils.timestamps import utc_now_iso

logger = logging.getLogger(__name__)

_JOB_NOT_FOUND_MSG = "Job not found"
_PROMPT_REQUIRED_MSG = "prompt is required"


def _parse_job_request(payload: Any) -> ReportJobRequest:
  """Validate a raw submission body, reporting a missing prompt the way clients expect."""
  # The prompt check runs first so a bad prompt always yields the same message.
  if not isinstance(payload, dict):
    raise RequestValidationFailed(_PROMPT_REQUIRED_MSG)
  prompt = payload.get("prompt")
  if not isinstance(prompt, str) or not prompt:
    raise RequestValidationFailed(_PROMPT_REQUIRED_MSG)

  return _parse_request(ReportJobRequest, payload)


def _resolve_idempotency_key(header_value: str | None, body_value: str | None) -> str | None:
  """Prefer the Idempotency-Key header over the body field."""
  for candidate in (header_value, body_value):
    if candidate and candidate.strip():
      return candidate.strip()
  return None


def _status_url(status_path: str, job_id: str) -> str:
  return f"{status_path}?job_id={job_id}"


def _build_job_record(request: ReportJobRequest, settings: Settings, *, job_id: str, idempotency_key: str | None, now: str) -> JobRecord:
  metadata: dict[str, Any] = dict(request.metadata or {})
  metadata.update({"source": "api", "timestamp": now})
  # Report linkage travels in metadata so the runner can notify the right row.
  if request.report_type:
    metadata["report_type"] = request.report_type
  if request.report_id:
    metadata["report_id"] = request.report_id

  return JobRecord(
    job_id=job_id,
    status="queued",
    created_at=now,
    updated_at=now,
    prompt=request.prompt[: settings.max_prompt_chars],
    model=request.model or settings.default_model,
    temperature=settings.default_temperature if request.temperature is None else request.temperature,
    max_tokens=request.max_tokens or settings.default_max_tokens,
    percent=0,
    eta_seconds=settings.queued_eta_seconds,
    idempotency_key=idempotency_key,
    user_id=request.user_id,
    summary_id=request.summary_id,
    metadata=metadata,
  )


async def create_job(payload: Any, settings: Settings, *, idempotency_header: str | None = None, status_path: str = "/jobs") -> JobCreateResponse:
  """Queue a report job, or return the job already created for the idempotency key."""
  request = _parse_job_request(payload)
  repo = _get_jobs_repo(settings)
  ledger = IdempotencyLedger(repo)
  idempotency_key = _resolve_idempotency_key(idempotency_header, request.idempotency_key)

  existing_id = await ledger.reserve(idempotency_key)
  if existing_id is not None:
    return JobCreateResponse(job_id=existing_id, status_url=_status_url(status_path, existing_id))

  job_id = generate_job_id()
  record = _build_job_record(request, settings, job_id=job_id, idempotency_key=idempotency_key, now=utc_now_iso())
  try:
    await repo.create_job(record)
  except JobStoreError as exc:
    # A concurrent submission may have claimed the key between lookup and insert.
    existing_id = await ledger.reserve(idempotency_key)
    if existing_id is not None:
      logger.info("Idempotency key %s was claimed concurrently by job %s", idempotency_key, existing_id)
      return JobCreateResponse(job_id=existing_id, status_url=_status_url(status_path, existing_id))
    logger.error("Failed to create job %s: %s", job_id, exc, exc_info=True)
    raise JobStoreError("Failed to create job", retryable=exc.retryable) from exc

  logger.info("Queued job %s model=%s report=%s/%s", job_id, record.model, record.report_type, record.report_id)
  trigger_job_processing(job_id, settings)
  return JobCreateResponse(job_id=job_id, status_url=_status_url(status_path, job_id))


def trigger_job_processing(job_id: str, settings: Settings) -> asyncio.Task[None] | None:
  """Start the runner for a queued job unless auto-processing is disabled."""
  if not settings.jobs_auto_process:
    logger.info("Auto-processing disabled; job %s stays queued", job_id)
    return None
  return _get_dispatcher(settings).dispatch(job_id)


async def get_job_status(job_id: str | None, settings: Settings) -> JobStatusResponse:
  """Fetch the polling view of a job."""
  if not job_id or not job_id.strip():
    raise RequestValidationFailed("job_id is required")

  repo = _get_jobs_repo(settings)
  try:
    record = await repo.get_job(job_id.strip())
  except JobStoreError as exc:
    logger.error("Failed to load job %s: %s", job_id, exc, exc_info=True)
    raise JobStoreError("Failed to get job status", retryable=exc.retryable) from exc

  if record is None:
    raise ResourceNotFound(_JOB_NOT_FOUND_MSG)

  return JobStatusResponse(job_id=record.job_id, status=record.status, percent=record.percent, eta_seconds=record.eta_seconds, result=record.result, error=record.error)
