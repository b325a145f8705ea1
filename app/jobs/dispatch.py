"""Detached dispatch of job runners onto the event loop."""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

logger = logging.getLogger(__name__)


class JobRunnerHandler(Protocol):
  """Anything that can drive a job to completion by id."""

  async def run(self, job_id: str) -> None:
    """Run one job."""


class JobDispatcher:
  """Start job runners as detached tasks and supervise their completion.

  The dispatcher holds a strong reference to each task until it finishes so the
  event loop cannot garbage-collect it mid-flight, and logs any exception the
  runner let escape.
  """

  def __init__(self, runner: JobRunnerHandler) -> None:
    self._runner = runner
    self._tasks: set[asyncio.Task[None]] = set()

  @property
  def in_flight(self) -> int:
    return len(self._tasks)

  def dispatch(self, job_id: str) -> asyncio.Task[None]:
    """Schedule ``runner.run(job_id)`` and return the task handle."""
    task = asyncio.create_task(self._runner.run(job_id), name=f"job-runner:{job_id}")
    self._tasks.add(task)
    task.add_done_callback(self._on_done)
    logger.info("Dispatched job %s", job_id)
    return task

  def _on_done(self, task: asyncio.Task[None]) -> None:
    self._tasks.discard(task)
    if task.cancelled():
      logger.warning("Job runner task %s was cancelled", task.get_name())
      return
    exc = task.exception()
    if exc is not None:
      logger.error("Job runner task %s crashed", task.get_name(), exc_info=(type(exc), exc, exc.__traceback__))

  async def drain(self, timeout: float | None = None) -> None:
    """Wait for in-flight runners, e.g. on shutdown or in tests."""
    if not self._tasks:
      return
    _done, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
    if pending:
      logger.warning("%d job runner(s) still in flight after drain timeout", len(pending))
