from __future__ import annotations

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from app.api.routes import chat, jobs, webhooks
from app.config import get_settings
from app.core.errors import AllProvidersFailedError, JobStoreError, RequestValidationFailed
from app.core.exceptions import (
  global_exception_handler,
  http_exception_handler,
  job_store_exception_handler,
  providers_failed_exception_handler,
  request_failed_exception_handler,
  request_validation_exception_handler,
)
from app.core.lifespan import lifespan
from app.core.middleware import RequestLoggingMiddleware, SecurityHeadersMiddleware

__version__ = "0.1.0"

settings = get_settings()

app = FastAPI(title="Polaris Engine", version=__version__, lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url="/openapi.json" if settings.debug else None)

app.add_middleware(
  CORSMiddleware,
  allow_origins=list(settings.allowed_origins),
  allow_credentials=True,
  allow_methods=["GET", "POST", "OPTIONS"],
  allow_headers=["content-type", "authorization", "idempotency-key", "x-webhook-signature", "x-request-id"],
  expose_headers=["content-length", "x-request-id"],
)


# Add exception handlers
app.add_exception_handler(Exception, global_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, request_validation_exception_handler)
app.add_exception_handler(RequestValidationFailed, request_failed_exception_handler)
app.add_exception_handler(JobStoreError, job_store_exception_handler)
app.add_exception_handler(AllProvidersFailedError, providers_failed_exception_handler)

# Add middleware
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(SecurityHeadersMiddleware)


@app.get("/health", include_in_schema=False)
async def health_check() -> dict[str, str]:
  """Return a simple health status."""
  return {"status": "ok", "version": __version__}


app.include_router(jobs.router, prefix="/jobs", tags=["jobs"])
app.include_router(jobs.router, prefix="/api/reportJobs", tags=["jobs"])
app.include_router(chat.router, prefix="/v1/chat", tags=["chat"])
app.include_router(webhooks.router, prefix="/api/webhooks", tags=["webhooks"])
