"""Retry logic with a capped exponential backoff."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

T = TypeVar("T")
logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]

BASE_DELAY_MS = 1000
MAX_DELAY_MS = 10_000


def next_delay(attempt: int, *, base_ms: int = BASE_DELAY_MS, cap_ms: int = MAX_DELAY_MS) -> int:
  """Return the delay in milliseconds before retry number ``attempt`` (0-based).

  Delays: 1s, 2s, 4s, 8s, then 10s for every later attempt.
  """
  if attempt < 0:
    raise ValueError("attempt must be zero or positive")
  return min(base_ms * 2**attempt, cap_ms)


async def retry_with_backoff(
  func: Callable[[], Awaitable[T]],
  *,
  max_retries: int,
  should_retry: Callable[[Exception], bool] = lambda exc: True,
  sleep: Sleep = asyncio.sleep,
  on_retry: Callable[[int, Exception, int], None] | None = None,
) -> T:
  """Call ``func`` up to ``max_retries + 1`` times, sleeping ``next_delay`` between attempts.

  ``sleep`` receives seconds so ``asyncio.sleep`` can be passed directly.
  """
  attempt = 0
  while True:
    try:
      return await func()
    except Exception as exc:
      if attempt >= max_retries or not should_retry(exc):
        raise
      delay_ms = next_delay(attempt)
      if on_retry is not None:
        on_retry(attempt + 1, exc, delay_ms)
      else:
        logger.warning("Retry attempt %d/%d needed. Error: %s. Retrying in %dms...", attempt + 1, max_retries, exc, delay_ms)
      await sleep(delay_ms / 1000)
      attempt += 1
