"""Guarded partial updates for job records.

Both repository backends funnel writes through ``apply_job_update`` so the lifecycle
rules hold regardless of where jobs are stored:

* status only moves forward (see ``is_forward_transition``);
* ``percent`` never decreases and is clamped to 0..100;
* ``started_at`` and ``completed_at`` are written at most once;
* ``updated_at`` is always touched.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Final

from app.jobs.models import JobRecord, is_forward_transition, is_terminal

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS: Final[frozenset[str]] = frozenset({"status", "percent", "eta_seconds", "result", "error", "metadata", "started_at", "completed_at"})


def apply_job_update(record: JobRecord, changes: dict[str, Any], *, now: str) -> JobRecord:
  """Return a copy of ``record`` with the accepted subset of ``changes`` applied."""
  unknown = set(changes) - UPDATABLE_FIELDS
  if unknown:
    raise ValueError(f"Unsupported job fields: {', '.join(sorted(unknown))}")

  accepted: dict[str, Any] = {}
  pending = {key: value for key, value in changes.items() if value is not None}

  # Terminal jobs are frozen; only updated_at moves.
  if is_terminal(record.status):
    if pending:
      logger.warning("Ignoring update to terminal job %s (status=%s fields=%s)", record.job_id, record.status, sorted(pending))
    return replace(record, updated_at=now)

  target_status = pending.pop("status", None)
  if target_status is not None:
    if is_forward_transition(record.status, target_status):
      accepted["status"] = target_status
    else:
      logger.warning("Rejected backward status move for job %s: %s -> %s", record.job_id, record.status, target_status)

  percent = pending.pop("percent", None)
  if percent is not None:
    percent = max(0, min(100, int(percent)))
    if percent >= record.percent:
      accepted["percent"] = percent
    else:
      logger.warning("Rejected percent decrease for job %s: %s -> %s", record.job_id, record.percent, percent)

  # Timestamps are set once.
  for stamp in ("started_at", "completed_at"):
    value = pending.pop(stamp, None)
    if value is None:
      continue
    if getattr(record, stamp) is None:
      accepted[stamp] = value
    else:
      logger.warning("Ignoring second %s for job %s", stamp, record.job_id)

  metadata = pending.pop("metadata", None)
  if metadata is not None:
    accepted["metadata"] = {**record.metadata, **metadata}

  accepted.update(pending)
  accepted["updated_at"] = now
  return replace(record, **accepted)
