"""Postgres-backed repository for generation jobs using SQLAlchemy."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from sqlalchemy import ColumnElement, and_, or_, select, update

from proposal_engine.core.database import get_session_factory
from proposal_engine.jobs.models import JobRecord
from proposal_engine.schema.jobs import ProposalJob
from proposal_engine.storage.jobs_repo import JobsRepository

_ISO_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def _now_iso() -> str:
  return datetime.now(UTC).strftime(_ISO_FORMAT)


class PostgresJobsRepository(JobsRepository):
  """Persist jobs to Postgres using SQLAlchemy."""

  def __init__(self, *, lease_seconds: float = 900.0) -> None:
    self._session_factory = get_session_factory()
    if self._session_factory is None:
      raise RuntimeError("Database not initialized")
    self._lease = timedelta(seconds=lease_seconds)

  def _claimable(self) -> ColumnElement[bool]:
    """Pending rows, plus processing rows whose lease ran out without a terminal write."""
    lease_cutoff = (datetime.now(UTC) - self._lease).strftime(_ISO_FORMAT)
    return or_(ProposalJob.status == "pending", and_(ProposalJob.status == "processing", ProposalJob.started_at < lease_cutoff))

  async def create_job(self, record: JobRecord) -> None:
    async with self._session_factory() as session:
      job = ProposalJob(
        job_id=record.job_id,
        user_id=record.user_id,
        action=record.action,
        input_json=record.input,
        status=record.status,
        created_at=record.created_at,
        started_at=record.started_at,
        completed_at=record.completed_at,
        output_content=record.output_content,
        output_usage=record.output_usage,
        error_message=record.error_message,
      )
      session.add(job)
      await session.commit()

  async def get_job(self, job_id: str, user_id: str) -> JobRecord | None:
    async with self._session_factory() as session:
      stmt = select(ProposalJob).where(ProposalJob.job_id == job_id, ProposalJob.user_id == user_id)
      row = (await session.execute(stmt)).scalar_one_or_none()
      if row is None:
        return None
      return self._model_to_record(row)

  async def claim_job(self, job_id: str, user_id: str) -> JobRecord | None:
    # The claimable predicate makes the claim a compare-and-set: only one caller sees a returned row.
    stmt = (
      update(ProposalJob)
      .where(ProposalJob.job_id == job_id, ProposalJob.user_id == user_id, self._claimable())
      .values(status="processing", started_at=_now_iso())
      .returning(ProposalJob)
    )
    return await self._execute_transition(stmt)

  async def claim_next_pending(self, user_id: str) -> JobRecord | None:
    async with self._session_factory() as session:
      # Skip rows locked by concurrent workers so each claimable job is claimed once.
      stmt = (
        select(ProposalJob)
        .where(ProposalJob.user_id == user_id, self._claimable())
        .order_by(ProposalJob.created_at.asc())
        .with_for_update(skip_locked=True)
        .limit(1)
      )
      row = (await session.execute(stmt)).scalar_one_or_none()
      if row is None:
        await session.rollback()
        return None

      row.status = "processing"
      row.started_at = _now_iso()
      await session.commit()
      return self._model_to_record(row)

  async def complete_job(self, job_id: str, *, content: str, usage: dict[str, int]) -> JobRecord | None:
    stmt = (
      update(ProposalJob)
      .where(ProposalJob.job_id == job_id, ProposalJob.status == "processing")
      .values(status="completed", output_content=content, output_usage=usage, completed_at=_now_iso())
      .returning(ProposalJob)
    )
    return await self._execute_transition(stmt)

  async def fail_job(self, job_id: str, *, error_message: str) -> JobRecord | None:
    stmt = (
      update(ProposalJob)
      .where(ProposalJob.job_id == job_id, ProposalJob.status == "processing")
      .values(status="failed", error_message=error_message, completed_at=_now_iso())
      .returning(ProposalJob)
    )
    return await self._execute_transition(stmt)

  async def _execute_transition(self, stmt) -> JobRecord | None:  # type: ignore[no-untyped-def]
    async with self._session_factory() as session:
      row = (await session.execute(stmt)).scalar_one_or_none()
      await session.commit()
      if row is None:
        return None
      return self._model_to_record(row)

  @staticmethod
  def _model_to_record(row: ProposalJob) -> JobRecord:
    return JobRecord(
      job_id=row.job_id,
      user_id=row.user_id,
      action=row.action,  # type: ignore[arg-type]
      input=dict(row.input_json or {}),
      status=row.status,  # type: ignore[arg-type]
      created_at=row.created_at,
      started_at=row.started_at,
      completed_at=row.completed_at,
      output_content=row.output_content,
      output_usage=row.output_usage,
      error_message=row.error_message,
    )
