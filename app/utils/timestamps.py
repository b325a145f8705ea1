"""UTC timestamp helpers shared by repositories and workers."""

from __future__ import annotations

from datetime import UTC, datetime

DATE_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def utc_now_iso() -> str:
  """Return the current UTC time as an ISO-8601 string with second precision."""
  return datetime.now(UTC).strftime(DATE_FORMAT)
