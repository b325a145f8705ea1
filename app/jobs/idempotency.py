"""Idempotency ledger backed by the job store."""

from __future__ import annotations

import logging

from app.core.errors import JobStoreError
from app.storage.jobs_repo import JobsRepository

logger = logging.getLogger(__name__)


class IdempotencyLedger:
  """Resolve caller-supplied idempotency keys to previously created jobs."""

  def __init__(self, repo: JobsRepository) -> None:
    self._repo = repo

  async def reserve(self, key: str | None) -> str | None:
    """Return the job id already created for ``key``, or None when a new job should be made.

    A blank key never touches the store. A failing lookup degrades to "no existing job"
    so submission still succeeds, at the cost of a possible duplicate.
    """
    if key is None or not key.strip():
      return None

    try:
      existing = await self._repo.find_by_idempotency_key(key)
    except JobStoreError as exc:
      logger.warning("Idempotency lookup failed for key %s; creating a new job: %s", key, exc)
      return None

    if existing is None:
      return None

    logger.info("Retrieved existing job %s for idempotency key %s", existing.job_id, key)
    return existing.job_id
