"""Storage interface for generation jobs."""

from __future__ import annotations

from typing import Protocol

from proposal_engine.jobs.models import JobRecord


class JobsRepository(Protocol):
  """Repository contract for job persistence.

  Status transitions are conditional writes: a claim succeeds on a ``pending`` row or on a
  ``processing`` row whose lease has expired, and a terminal write only succeeds on a
  ``processing`` row. Methods return None when the
  condition does not hold, so concurrent callers can never both win.
  """

  async def create_job(self, record: JobRecord) -> None:
    """Persist an initial job record."""

  async def get_job(self, job_id: str, user_id: str) -> JobRecord | None:
    """Fetch a job owned by ``user_id``."""

  async def claim_job(self, job_id: str, user_id: str) -> JobRecord | None:
    """Move a specific claimable job owned by ``user_id`` to processing."""

  async def claim_next_pending(self, user_id: str) -> JobRecord | None:
    """Atomically claim the oldest claimable job owned by ``user_id``."""

  async def complete_job(self, job_id: str, *, content: str, usage: dict[str, int]) -> JobRecord | None:
    """Record a successful result for a processing job."""

  async def fail_job(self, job_id: str, *, error_message: str) -> JobRecord | None:
    """Record a failure for a processing job."""
