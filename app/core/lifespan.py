import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from urllib.parse import urlparse

from fastapi import FastAPI
from sqlalchemy import text

from app.core.database import dispose_engine, get_db_engine
from app.core.logging import _initialize_logging
from app.jobs.factory import get_pipeline, shutdown_pipeline

# Seconds to wait for in-flight job runners on shutdown.
_SHUTDOWN_DRAIN_SECONDS = 30.0


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
  """Set up logging and the job pipeline, and drain running jobs on shutdown."""
  from app.config import get_settings

  settings = get_settings()
  logger = logging.getLogger("app.core.lifespan")

  try:
    _initialize_logging(settings)
    logger.info("Startup complete - logging verified.")
  except RuntimeError:
    # Fall back to stderr logging rather than refusing to serve.
    logger.warning("Initial logging setup failed; continuing with default handlers.", exc_info=True)

  pipeline = get_pipeline(settings)
  configured = [name for name in settings.provider_order if settings.provider(name).has_credentials]
  if not configured:
    logger.warning("No provider credentials configured; every job will fail.")
  logger.info("Providers with credentials: %s; webhook enabled=%s", ",".join(configured) or "<none>", pipeline.notifier.enabled)

  if settings.pg_dsn:
    logger.info("Job store: postgres %s", _redact_dsn(settings.pg_dsn))
    await _log_db_state(logger=logger)
  else:
    logger.info("Job store: in-memory")

  yield

  # Jobs still queued or running after the drain are not resumed on the next start.
  await shutdown_pipeline(drain_timeout=_SHUTDOWN_DRAIN_SECONDS)
  await dispose_engine()
  logger.info("Shutdown complete.")


def _redact_dsn(raw: str | None) -> str:
  """Redact credentials from a DSN while keeping host/db visible."""
  if not raw:
    return "<unset>"

  parsed = urlparse(raw)
  if not parsed.scheme:
    return "<invalid>"

  user = parsed.username or ""
  host = parsed.hostname or ""
  port = f":{parsed.port}" if parsed.port else ""
  netloc = f"{user}@{host}{port}" if user else f"{host}{port}"
  database = parsed.path.lstrip("/")
  path = f"/{database}" if database else ""
  return f"{parsed.scheme}://{netloc}{path}"


async def _log_db_state(*, logger: logging.Logger) -> None:
  """Log whether the report_jobs table is reachable."""
  engine = get_db_engine()
  if engine is None:
    logger.warning("Database engine unavailable; cannot inspect runtime schema state.")
    return

  query = """
    SELECT 1
    FROM information_schema.tables
    WHERE table_schema = current_schema()
      AND table_name = 'report_jobs'
    LIMIT 1
    """
  try:
    async with engine.connect() as connection:
      result = await connection.execute(text(query))
      jobs_table_exists = result.first() is not None
  except Exception:  # noqa: BLE001
    logger.warning("Could not inspect database state at startup.", exc_info=True)
    return

  if not jobs_table_exists:
    logger.warning("report_jobs table missing; run `alembic upgrade head`.")
  else:
    logger.info("Runtime DB state report_jobs_table=%s", jobs_table_exists)
