"""Assemble the job pipeline from settings."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

import httpx

from app.ai.fallback import ProviderFallbackChain
from app.ai.gateway import ProviderGateway
from app.config import Settings
from app.jobs.dispatch import JobDispatcher
from app.jobs.runner import JobRunner
from app.notifications.fallback_persister import FallbackPersister
from app.notifications.webhook_notifier import CompletionNotifier
from app.storage.factory import _get_jobs_repo, _get_reports_repo
from app.storage.jobs_repo import JobsRepository
from app.storage.reports_repo import ReportsRepository
from app.utils.backoff import Sleep

logger = logging.getLogger(__name__)


@dataclass
class JobPipeline:
  """The collaborators that run a job, built once per process."""

  gateway: ProviderGateway
  chain: ProviderFallbackChain
  notifier: CompletionNotifier
  runner: JobRunner
  dispatcher: JobDispatcher

  async def aclose(self, *, drain_timeout: float | None = None) -> None:
    await self.dispatcher.drain(drain_timeout)
    await self.gateway.aclose()


_PIPELINE: JobPipeline | None = None


def build_pipeline(
  settings: Settings,
  *,
  jobs_repo: JobsRepository | None = None,
  reports_repo: ReportsRepository | None = None,
  gateway: ProviderGateway | None = None,
  http_client: httpx.AsyncClient | None = None,
  sleep: Sleep = asyncio.sleep,
) -> JobPipeline:
  """Build a pipeline; tests pass fakes for any collaborator."""
  jobs_repo = jobs_repo or _get_jobs_repo(settings)
  reports_repo = reports_repo or _get_reports_repo(settings)
  gateway = gateway or ProviderGateway(settings)
  chain = ProviderFallbackChain(gateway, settings.provider_order)
  persister = FallbackPersister(reports_repo)
  notifier = CompletionNotifier(settings.webhook, persister=persister, http_client=http_client, sleep=sleep)
  runner = JobRunner(settings, jobs_repo, chain, notifier, reports_repo)
  return JobPipeline(gateway=gateway, chain=chain, notifier=notifier, runner=runner, dispatcher=JobDispatcher(runner))


def get_pipeline(settings: Settings) -> JobPipeline:
  """Return the process-wide pipeline, building it on first use."""
  global _PIPELINE
  if _PIPELINE is None:
    _PIPELINE = build_pipeline(settings)
    logger.info("Job pipeline ready provider_order=%s webhook_enabled=%s", ",".join(settings.provider_order), _PIPELINE.notifier.enabled)
  return _PIPELINE


def _get_dispatcher(settings: Settings) -> JobDispatcher:
  return get_pipeline(settings).dispatcher


async def shutdown_pipeline(*, drain_timeout: float | None = None) -> None:
  """Drain in-flight jobs and release provider clients."""
  global _PIPELINE
  pipeline, _PIPELINE = _PIPELINE, None
  if pipeline is not None:
    await pipeline.aclose(drain_timeout=drain_timeout)


def reset_pipeline() -> None:
  global _PIPELINE
  _PIPELINE = None
