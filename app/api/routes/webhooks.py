from typing import Annotated, Any

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse

from app.api.deps import get_json_body
from app.api.models import WebhookBatchRetryResponse, WebhookRetryResponse
from app.config import Settings, get_settings
from app.notifications.signing import SIGNATURE_HEADER
from app.services import webhooks as webhook_service

router = APIRouter()


# Retry routes are declared first so "/retry" is never captured as a webhook type.
@router.post("/retry", response_model=WebhookRetryResponse)
async def retry_webhook(payload: Annotated[Any, Depends(get_json_body)], settings: Annotated[Settings, Depends(get_settings)]) -> JSONResponse:
  """Re-send the stored outcome of one report."""
  result = await webhook_service.retry_report_webhook(payload, settings)
  return JSONResponse(status_code=200 if result.success else 400, content=result.model_dump(exclude_none=True))


@router.get("/retry", response_model=WebhookBatchRetryResponse)
async def retry_failed_webhooks(settings: Annotated[Settings, Depends(get_settings)]) -> WebhookBatchRetryResponse:
  """Re-send every failed webhook that still has retry budget."""
  return await webhook_service.retry_failed_webhooks(settings)


@router.post("/{webhook_type}")
async def receive_webhook(
  webhook_type: str,
  request: Request,
  settings: Annotated[Settings, Depends(get_settings)],
  signature: Annotated[str | None, Header(alias=SIGNATURE_HEADER)] = None,
) -> JSONResponse:
  """Apply a signed completion webhook to its report row."""
  raw_body = await request.body()
  receipt = await webhook_service.receive_webhook(raw_body, signature, webhook_type, settings)
  return JSONResponse(status_code=receipt.status_code, content=receipt.body)
