"""Repository selection based on configured storage."""

from __future__ import annotations

import logging
from functools import lru_cache

from app.config import Settings
from app.storage.jobs_repo import JobsRepository
from app.storage.memory_jobs_repo import InMemoryJobsRepository
from app.storage.memory_reports_repo import InMemoryReportsRepository
from app.storage.reports_repo import ReportsRepository

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def _memory_jobs_repo() -> InMemoryJobsRepository:
  logger.warning("POLARIS_PG_DSN not set; jobs are stored in memory and lost on restart.")
  return InMemoryJobsRepository()


@lru_cache(maxsize=1)
def _memory_reports_repo() -> InMemoryReportsRepository:
  return InMemoryReportsRepository()


def _get_jobs_repo(settings: Settings) -> JobsRepository:
  """Return the Postgres jobs repository, or the in-memory one without a DSN."""
  if not settings.pg_dsn:
    return _memory_jobs_repo()

  from app.storage.postgres_jobs_repo import PostgresJobsRepository

  return PostgresJobsRepository()


def _get_reports_repo(settings: Settings) -> ReportsRepository:
  """Return the Postgres reports repository, or the in-memory one without a DSN."""
  if not settings.pg_dsn:
    return _memory_reports_repo()

  from app.storage.postgres_reports_repo import PostgresReportsRepository

  return PostgresReportsRepository()
