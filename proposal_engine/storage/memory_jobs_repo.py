"""Process-local job repository for development and tests."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import replace
from datetime import UTC, datetime, timedelta

from proposal_engine.jobs.models import JobRecord

_ISO_FORMAT = "%Y-%m-%dT%H:%M:%SZ"
DEFAULT_LEASE_SECONDS = 900.0


def _utc_now() -> datetime:
  return datetime.now(UTC)


class InMemoryJobsRepository:
  """Keep jobs in a dict, serializing transitions behind an asyncio lock.

  A ``processing`` job whose ``started_at`` is older than ``lease_seconds`` is claimable
  again, so work abandoned by a crashed worker is picked up by the next claim.
  """

  def __init__(self, *, lease_seconds: float = DEFAULT_LEASE_SECONDS, clock: Callable[[], datetime] = _utc_now) -> None:
    self._jobs: dict[str, JobRecord] = {}
    self._lock = asyncio.Lock()
    self._lease = timedelta(seconds=lease_seconds)
    self._clock = clock

  def _now_iso(self) -> str:
    return self._clock().strftime(_ISO_FORMAT)

  def _is_claimable(self, record: JobRecord, user_id: str, lease_cutoff: str) -> bool:
    if record.user_id != user_id:
      return False
    if record.status == "pending":
      return True
    return record.status == "processing" and record.started_at is not None and record.started_at < lease_cutoff

  def _lease_cutoff(self) -> str:
    return (self._clock() - self._lease).strftime(_ISO_FORMAT)

  async def create_job(self, record: JobRecord) -> None:
    async with self._lock:
      if record.job_id in self._jobs:
        raise ValueError(f"Job already exists: {record.job_id}")
      self._jobs[record.job_id] = replace(record)

  async def get_job(self, job_id: str, user_id: str) -> JobRecord | None:
    record = self._jobs.get(job_id)
    if record is None or record.user_id != user_id:
      return None
    return replace(record)

  async def claim_job(self, job_id: str, user_id: str) -> JobRecord | None:
    async with self._lock:
      record = self._jobs.get(job_id)
      if record is None or not self._is_claimable(record, user_id, self._lease_cutoff()):
        return None
      return self._store(replace(record, status="processing", started_at=self._now_iso()))

  async def claim_next_pending(self, user_id: str) -> JobRecord | None:
    async with self._lock:
      cutoff = self._lease_cutoff()
      claimable = [record for record in self._jobs.values() if self._is_claimable(record, user_id, cutoff)]
      if not claimable:
        return None
      oldest = min(claimable, key=lambda record: record.created_at)
      return self._store(replace(oldest, status="processing", started_at=self._now_iso()))

  async def complete_job(self, job_id: str, *, content: str, usage: dict[str, int]) -> JobRecord | None:
    async with self._lock:
      record = self._jobs.get(job_id)
      if record is None or record.status != "processing":
        return None
      return self._store(replace(record, status="completed", output_content=content, output_usage=dict(usage), completed_at=self._now_iso()))

  async def fail_job(self, job_id: str, *, error_message: str) -> JobRecord | None:
    async with self._lock:
      record = self._jobs.get(job_id)
      if record is None or record.status != "processing":
        return None
      return self._store(replace(record, status="failed", error_message=error_message, completed_at=self._now_iso()))

  def _store(self, record: JobRecord) -> JobRecord:
    self._jobs[record.job_id] = record
    return replace(record)
