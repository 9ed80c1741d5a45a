"""Job lifecycle: create, claim, execute and persist exactly one terminal state."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Coroutine
from contextlib import aclosing
from datetime import UTC, datetime
from typing import Any

from proposal_engine.ai.errors import JobNotFoundError
from proposal_engine.ai.orchestrator import DocumentOrchestrator, GenerationResult
from proposal_engine.jobs.models import JobAction, JobRecord
from proposal_engine.storage.jobs_repo import JobsRepository
from proposal_engine.utils.ids import generate_job_id

logger = logging.getLogger(__name__)

CLIENT_DISCONNECTED_MESSAGE = "Client disconnected before generation completed"
CANCELLED_MESSAGE = "Job execution was cancelled"

# Strong references keep detached tasks alive until they finish.
_BACKGROUND_TASKS: set[asyncio.Task[Any]] = set()


def _now_iso() -> str:
  return datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def _log_task_failure(task: asyncio.Task[Any]) -> None:
  """Log unexpected failures from background tasks."""
  _BACKGROUND_TASKS.discard(task)
  if task.cancelled():
    logger.warning("Background task %s was cancelled", task.get_name())
    return
  exc = task.exception()
  if exc is not None:
    logger.error("Background task %s failed: %s", task.get_name(), exc, exc_info=exc)


def spawn_background(coro: Coroutine[Any, Any, Any], *, name: str | None = None) -> asyncio.Task[Any]:
  """Run ``coro`` detached from the caller's cancellation scope."""
  task = asyncio.get_running_loop().create_task(coro, name=name)
  _BACKGROUND_TASKS.add(task)
  task.add_done_callback(_log_task_failure)
  return task


async def wait_for_background_tasks(timeout: float | None = None) -> None:
  """Wait for detached tasks to settle (used on shutdown and in tests)."""
  while _BACKGROUND_TASKS:
    pending = list(_BACKGROUND_TASKS)
    _done, still_pending = await asyncio.wait(pending, timeout=timeout)
    if still_pending:
      logger.warning("%d background task(s) still running after %.1fs", len(still_pending), timeout or 0)
      return


def _error_message(exc: BaseException) -> str:
  return str(exc) or type(exc).__name__


class JobProcessor:
  """Owns job state transitions around a :class:`DocumentOrchestrator`.

  ``execute`` and ``stream_events`` never raise for generation failures: every error is
  persisted as a ``failed`` job instead.
  """

  def __init__(self, *, repo: JobsRepository, orchestrator: DocumentOrchestrator) -> None:
    self._repo = repo
    self._orchestrator = orchestrator

  async def create_job(self, user_id: str, action: JobAction, payload: dict[str, Any]) -> JobRecord:
    record = JobRecord(job_id=generate_job_id(), user_id=user_id, action=action, input=payload, status="pending", created_at=_now_iso())
    await self._repo.create_job(record)
    logger.info("Job created job_id=%s action=%s user_id=%s", record.job_id, action, user_id)
    return record

  async def get_job(self, user_id: str, job_id: str) -> JobRecord:
    record = await self._repo.get_job(job_id, user_id)
    if record is None:
      raise JobNotFoundError("Job not found")
    return record

  async def claim(self, user_id: str, job_id: str | None = None) -> JobRecord:
    """Claim a specific job, or the oldest claimable one, for processing.

    Claimable means pending, or processing with an expired lease.
    """
    if job_id is not None:
      record = await self._repo.claim_job(job_id, user_id)
      if record is None:
        raise JobNotFoundError("Job not found")
    else:
      record = await self._repo.claim_next_pending(user_id)
      if record is None:
        raise JobNotFoundError("No pending jobs found")

    logger.info("Job claimed job_id=%s action=%s", record.job_id, record.action)
    return record

  async def execute(self, job: JobRecord, *, streaming: bool = True) -> JobRecord | None:
    """Run a claimed job to completion and persist its terminal state."""
    try:
      if streaming:
        generation = await self._orchestrator.open_stream(job.action, job.input, job.user_id)
        result = await generation.collect()
      else:
        result = await self._orchestrator.generate(job.action, job.input, job.user_id)
    except asyncio.CancelledError:
      spawn_background(self._fail(job, CANCELLED_MESSAGE), name=f"fail-job-{job.job_id}")
      raise
    except Exception as exc:  # noqa: BLE001
      logger.error("Job failed job_id=%s action=%s: %s", job.job_id, job.action, exc, exc_info=True)
      return await self._fail(job, _error_message(exc))

    return await self._complete_detaching_on_cancel(job, result)

  async def stream_events(self, job: JobRecord) -> AsyncIterator[dict[str, Any]]:
    """Execute a claimed job while yielding ``chunk`` events, then ``done`` or ``error``."""
    try:
      generation = await self._orchestrator.open_stream(job.action, job.input, job.user_id)
      async with aclosing(generation.fragments()) as fragments:
        async for fragment in fragments:
          yield {"type": "chunk", "text": fragment}
      result = generation.result
      if result is None:
        raise RuntimeError("Stream finished without a result")
    except (asyncio.CancelledError, GeneratorExit):
      # The caller went away mid-stream; the write must outlive this generator.
      spawn_background(self._fail(job, CLIENT_DISCONNECTED_MESSAGE), name=f"fail-job-{job.job_id}")
      raise
    except Exception as exc:  # noqa: BLE001
      logger.error("Streaming job failed job_id=%s action=%s: %s", job.job_id, job.action, exc, exc_info=True)
      message = _error_message(exc)
      await self._fail(job, message)
      yield {"type": "error", "error": message}
      return

    await self._complete_detaching_on_cancel(job, result)
    yield {"type": "done", "content": result.content}

  async def _complete_detaching_on_cancel(self, job: JobRecord, result: GenerationResult) -> JobRecord | None:
    try:
      return await self._complete(job, result)
    except asyncio.CancelledError:
      # The conditional write makes a repeated completion a no-op.
      spawn_background(self._complete(job, result), name=f"complete-job-{job.job_id}")
      raise

  async def _complete(self, job: JobRecord, result: GenerationResult) -> JobRecord | None:
    try:
      record = await self._repo.complete_job(job.job_id, content=result.content, usage=result.usage.as_dict())
    except Exception as exc:  # noqa: BLE001
      logger.error("Failed to persist completion job_id=%s: %s", job.job_id, exc, exc_info=True)
      return None

    if record is None:
      logger.warning("Job job_id=%s was no longer processing; completion discarded", job.job_id)
    else:
      logger.info("Job completed job_id=%s usage=%s truncated=%s", job.job_id, record.output_usage, result.truncated)
    return record

  async def _fail(self, job: JobRecord, message: str) -> JobRecord | None:
    try:
      record = await self._repo.fail_job(job.job_id, error_message=message)
    except Exception as exc:  # noqa: BLE001
      logger.error("Failed to persist failure job_id=%s: %s", job.job_id, exc, exc_info=True)
      return None

    if record is None:
      logger.warning("Job job_id=%s was no longer processing; failure discarded", job.job_id)
    return record
