"""Lifecycle rules enforced on every job update."""

from __future__ import annotations

import random

import pytest

from app.jobs.models import JobRecord, is_forward_transition, is_terminal
from app.jobs.transitions import apply_job_update

_STATUSES = ("queued", "running", "succeeded", "failed", "cancelled")
_RANK = {"queued": 0, "running": 1, "succeeded": 2, "failed": 2, "cancelled": 2}


def _record(**overrides: object) -> JobRecord:
  base = {
    "job_id": "job_1_abcdefgh",
    "status": "queued",
    "created_at": "2026-01-01T00:00:00Z",
    "updated_at": "2026-01-01T00:00:00Z",
    "prompt": "Summarize X",
    "model": "sonar",
    "temperature": 0.2,
    "max_tokens": 2600,
  }
  base.update(overrides)
  return JobRecord(**base)  # type: ignore[arg-type]


@pytest.mark.parametrize(
  ("current", "target", "allowed"),
  [
    ("queued", "running", True),
    ("queued", "succeeded", True),
    ("queued", "queued", True),
    ("running", "running", True),
    ("running", "failed", True),
    ("running", "queued", False),
    ("succeeded", "failed", False),
    ("failed", "failed", False),
    ("cancelled", "running", False),
    ("queued", "paused", False),
  ],
)
def test_is_forward_transition(current: str, target: str, allowed: bool) -> None:
  assert is_forward_transition(current, target) is allowed


def test_running_job_cannot_move_back_to_queued() -> None:
  record = _record(status="running", percent=15)
  updated = apply_job_update(record, {"status": "queued"}, now="2026-01-01T00:00:05Z")
  assert updated.status == "running"
  assert updated.updated_at == "2026-01-01T00:00:05Z"


def test_terminal_job_is_frozen() -> None:
  record = _record(status="succeeded", percent=100, result="OK", completed_at="2026-01-01T00:00:03Z")
  updated = apply_job_update(record, {"status": "failed", "error": "late", "percent": 100}, now="2026-01-01T00:00:09Z")
  assert updated.status == "succeeded"
  assert updated.result == "OK"
  assert updated.error is None
  assert updated.completed_at == "2026-01-01T00:00:03Z"


def test_percent_is_clamped_and_never_decreases() -> None:
  record = _record(status="running", percent=80)
  assert apply_job_update(record, {"percent": 15}, now="t").percent == 80
  assert apply_job_update(record, {"percent": 250}, now="t").percent == 100


def test_timestamps_are_written_once() -> None:
  record = _record(status="running", started_at="2026-01-01T00:00:01Z")
  updated = apply_job_update(record, {"started_at": "2026-01-01T00:00:07Z", "completed_at": "2026-01-01T00:00:08Z"}, now="t")
  assert updated.started_at == "2026-01-01T00:00:01Z"
  assert updated.completed_at == "2026-01-01T00:00:08Z"


def test_metadata_is_merged() -> None:
  record = _record(metadata={"source": "api", "report_id": "r1"})
  updated = apply_job_update(record, {"metadata": {"provider_used": "openai"}}, now="t")
  assert updated.metadata == {"source": "api", "report_id": "r1", "provider_used": "openai"}


def test_unknown_fields_are_rejected() -> None:
  with pytest.raises(ValueError, match="Unsupported job fields: prompt"):
    apply_job_update(_record(), {"prompt": "other"}, now="t")


def test_random_update_sequences_respect_lifecycle() -> None:
  rng = random.Random(20261019)
  for _ in range(200):
    record = _record()
    first_started: str | None = None
    first_completed: str | None = None
    for step in range(12):
      changes: dict[str, object] = {}
      if rng.random() < 0.6:
        changes["status"] = rng.choice(_STATUSES)
      if rng.random() < 0.6:
        changes["percent"] = rng.randint(-10, 120)
      if rng.random() < 0.3:
        changes["started_at"] = f"s{step}"
      if rng.random() < 0.3:
        changes["completed_at"] = f"c{step}"

      before = record
      record = apply_job_update(record, changes, now=f"u{step}")

      assert _RANK[record.status] >= _RANK[before.status]
      if is_terminal(before.status):
        assert record.status == before.status
        assert record.percent == before.percent
      assert record.percent >= before.percent
      assert 0 <= record.percent <= 100

      first_started = first_started or record.started_at
      first_completed = first_completed or record.completed_at
      assert record.started_at == first_started
      assert record.completed_at == first_completed
