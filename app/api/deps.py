"""Shared FastAPI dependencies."""

from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import Request

logger = logging.getLogger(__name__)


async def get_json_body(request: Request) -> Any:
  """Decode the request body as JSON, yielding None when it is empty or malformed.

  Endpoints that answer bad bodies with their own 400 message take the raw value
  and validate it in the service layer.
  """
  raw = await request.body()
  if not raw:
    return None
  try:
    return json.loads(raw)
  except ValueError:
    logger.info("Ignoring non-JSON body on %s %s", request.method, request.url.path)
    return None
