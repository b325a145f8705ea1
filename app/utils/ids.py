"""Identifier utilities."""

from __future__ import annotations

import secrets
import string
import time
import uuid

_BASE36 = string.digits + string.ascii_lowercase


def generate_job_id() -> str:
  """Return a new job identifier of the form ``job_<epoch-ms>_<8 base36 chars>``."""
  suffix = "".join(secrets.choice(_BASE36) for _ in range(8))
  return f"job_{int(time.time() * 1000)}_{suffix}"


def generate_request_id() -> str:
  """Return a new request correlation identifier."""
  return str(uuid.uuid4())
