import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Header, Query, Request, status

from app.api.deps import get_json_body
from app.api.models import JobCreateResponse, JobStatusResponse
from app.config import Settings, get_settings
from app.services import jobs as job_service

router = APIRouter()
logger = logging.getLogger("app.api.routes.jobs")


@router.post("", response_model=JobCreateResponse, status_code=status.HTTP_202_ACCEPTED)
async def create_job(
  request: Request,
  payload: Annotated[Any, Depends(get_json_body)],
  settings: Annotated[Settings, Depends(get_settings)],
  idempotency_key: Annotated[str | None, Header(alias="Idempotency-Key")] = None,
) -> JobCreateResponse:
  """Queue a research report job and return where to poll it."""
  return await job_service.create_job(payload, settings, idempotency_header=idempotency_key, status_path=request.url.path)


@router.get("", response_model=JobStatusResponse)
async def get_job_status(settings: Annotated[Settings, Depends(get_settings)], job_id: Annotated[str | None, Query()] = None) -> JobStatusResponse:
  """Fetch the status, progress and result of a job."""
  return await job_service.get_job_status(job_id, settings)
