"""HMAC-SHA256 signatures for webhook payloads."""

from __future__ import annotations

import hashlib
import hmac
import json
from typing import Any

SIGNATURE_HEADER = "X-Webhook-Signature"
_PREFIX = "sha256="


def serialize_payload(payload: dict[str, Any]) -> bytes:
  """Serialize a payload once; the signature covers exactly these bytes."""
  return json.dumps(payload, ensure_ascii=False, separators=(",", ":")).encode("utf-8")


def sign(body: bytes, secret: str) -> str:
  """Return the header value ``sha256=<hex digest>`` for ``body``."""
  digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
  return f"{_PREFIX}{digest}"


def verify(body: bytes, signature: str | None, secret: str | None) -> bool:
  """Check a received signature header against ``body`` in constant time."""
  if not secret or not signature:
    return False
  scheme, sep, received = signature.partition("=")
  if not sep or scheme != "sha256" or not received:
    return False
  expected = sign(body, secret)[len(_PREFIX) :]
  return hmac.compare_digest(received.lower(), expected)
