"""Service layer tying dispatch, job lifecycle and synchronous generation together."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any

from proposal_engine.ai.errors import GenerationTimeoutError, JobStoreError
from proposal_engine.ai.orchestrator import DocumentOrchestrator, GenerationResult
from proposal_engine.config import Settings
from proposal_engine.jobs.dispatch import DispatchMode, choose_dispatch_mode
from proposal_engine.jobs.models import JobAction, JobRecord
from proposal_engine.jobs.worker import JobProcessor, spawn_background

logger = logging.getLogger(__name__)

JOB_STATUS_TIMEOUT_MESSAGE = "Request timed out. Please try again."
# Actions whose failed job insert is an error instead of a synchronous fallback.
_NO_SYNC_FALLBACK_ACTIONS = frozenset({"generate_proposal"})


@dataclass(frozen=True)
class SyncOutcome:
  result: GenerationResult


@dataclass(frozen=True)
class JobAccepted:
  job: JobRecord


@dataclass(frozen=True)
class StreamOutcome:
  job: JobRecord
  events: AsyncIterator[dict[str, Any]]


GenerationOutcome = SyncOutcome | JobAccepted | StreamOutcome


class GenerationService:
  """Entry point used by the HTTP routes."""

  def __init__(self, *, settings: Settings, processor: JobProcessor, orchestrator: DocumentOrchestrator) -> None:
    self._settings = settings
    self._processor = processor
    self._orchestrator = orchestrator

  async def generate(self, action: JobAction, payload: dict[str, Any], user_id: str, *, async_requested: bool | None = None, stream_requested: bool | None = None) -> GenerationOutcome:
    """Dispatch a document generation according to the action and caller flags."""
    mode = choose_dispatch_mode(action, async_requested=async_requested, stream_requested=stream_requested)
    logger.info("Dispatching action=%s mode=%s user_id=%s", action, mode.value, user_id)
    if mode is DispatchMode.SYNC:
      return SyncOutcome(await self.run_sync(action, payload, user_id))

    try:
      job = await self._processor.create_job(user_id, action, payload)
    except Exception as exc:  # noqa: BLE001
      if action in _NO_SYNC_FALLBACK_ACTIONS:
        logger.error("Job creation failed for action=%s: %s", action, exc, exc_info=True)
        raise JobStoreError(f"Failed to create async job: {exc}") from exc
      logger.warning("Job creation failed for action=%s; falling back to sync mode: %s", action, exc)
      return SyncOutcome(await self.run_sync(action, payload, user_id))

    job = await self._processor.claim(user_id, job.job_id)
    if mode is DispatchMode.ASYNC_STREAM:
      return StreamOutcome(job=job, events=self._processor.stream_events(job))

    spawn_background(self._run_in_background(job), name=f"job-{job.job_id}")
    return JobAccepted(job)

  async def _run_in_background(self, job: JobRecord) -> None:
    # Let the 202 response reach the caller before the long upstream call starts.
    await asyncio.sleep(self._settings.background_start_delay_seconds)
    await self._processor.execute(job, streaming=True)

  async def run_sync(self, action: str, payload: dict[str, Any], user_id: str) -> GenerationResult:
    """Generate inline under the synchronous wall-clock deadline."""
    try:
      async with asyncio.timeout(self._settings.sync_timeout_seconds):
        return await self._orchestrator.generate(action, payload, user_id)
    except TimeoutError as exc:
      logger.warning("Synchronous generation timed out action=%s after %.0fs", action, self._settings.sync_timeout_seconds)
      raise GenerationTimeoutError() from exc

  async def analyze_focus_areas(self, payload: dict[str, Any], user_id: str) -> list[dict[str, Any]]:
    try:
      async with asyncio.timeout(self._settings.sync_timeout_seconds):
        return await self._orchestrator.analyze_focus_areas(payload, user_id)
    except TimeoutError as exc:
      raise GenerationTimeoutError("Request timeout: Focus area analysis took too long. Try reducing the input size.") from exc

  async def get_job(self, user_id: str, job_id: str) -> JobRecord:
    try:
      async with asyncio.timeout(self._settings.job_status_timeout_seconds):
        return await self._processor.get_job(user_id, job_id)
    except TimeoutError as exc:
      raise GenerationTimeoutError(JOB_STATUS_TIMEOUT_MESSAGE) from exc

  async def process_job(self, user_id: str, job_id: str | None = None) -> JobRecord:
    """Claim a pending job (given or next) and execute it inline."""
    job = await self._processor.claim(user_id, job_id)
    record = await self._processor.execute(job, streaming=True)
    # A lost terminal write leaves the claimed row as the best available view.
    return record or job
