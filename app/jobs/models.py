"""Domain models for asynchronous report jobs."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Final, Literal

JobStatus = Literal["queued", "running", "succeeded", "failed", "cancelled"]
ReportOutcome = Literal["completed", "failed"]

TERMINAL_STATUSES: Final[frozenset[str]] = frozenset({"succeeded", "failed", "cancelled"})
_STATUS_RANK: Final[dict[str, int]] = {"queued": 0, "running": 1, "succeeded": 2, "failed": 2, "cancelled": 2}


def is_terminal(status: str) -> bool:
  return status in TERMINAL_STATUSES


def is_forward_transition(current: str, target: str) -> bool:
  """Return True when moving from ``current`` to ``target`` respects the job lifecycle.

  Status only moves forward by lifecycle rank: queued, then running, then a terminal state.
  Re-asserting the same non-terminal status is allowed so progress writes can repeat it.
  Terminal states are absorbing.
  """
  if current not in _STATUS_RANK or target not in _STATUS_RANK:
    return False
  if is_terminal(current):
    return False
  if current == target:
    return True
  return _STATUS_RANK[target] > _STATUS_RANK[current]


@dataclass
class JobRecord:
  """Represents a background report generation job."""

  job_id: str
  status: JobStatus
  created_at: str
  updated_at: str
  prompt: str
  model: str
  temperature: float
  max_tokens: int
  percent: int = 0
  eta_seconds: int = 0
  result: str | None = None
  error: str | None = None
  idempotency_key: str | None = None
  user_id: str | None = None
  summary_id: str | None = None
  metadata: dict[str, Any] = field(default_factory=dict)
  started_at: str | None = None
  completed_at: str | None = None

  @property
  def report_type(self) -> str | None:
    value = self.metadata.get("report_type")
    return str(value) if value else None

  @property
  def report_id(self) -> str | None:
    value = self.metadata.get("report_id")
    return str(value) if value else None
