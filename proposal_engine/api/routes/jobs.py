"""Job polling and worker endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from proposal_engine.api.deps import get_generation_service
from proposal_engine.api.models import JobStatusResponse, JobView, ProcessJobRequest, ProcessJobResponse
from proposal_engine.core.security import get_current_user_id
from proposal_engine.services.generation import GenerationService

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/process", response_model=ProcessJobResponse)
async def process_job(  # noqa: B008
  payload: ProcessJobRequest | None = None,
  user_id: str = Depends(get_current_user_id),  # noqa: B008
  service: GenerationService = Depends(get_generation_service),  # noqa: B008
) -> ProcessJobResponse:
  """Claim the given (or oldest) pending job and run it to a terminal state."""
  job_id = payload.job_id if payload is not None else None
  record = await service.process_job(user_id, job_id)
  logger.info("Processed job job_id=%s status=%s", record.job_id, record.status)
  return ProcessJobResponse(success=record.status == "completed", job=JobView.from_record(record))


@router.get("/{job_id}", response_model=JobStatusResponse)
async def get_job_status(  # noqa: B008
  job_id: str,
  user_id: str = Depends(get_current_user_id),  # noqa: B008
  service: GenerationService = Depends(get_generation_service),  # noqa: B008
) -> JobStatusResponse:
  """Fetch the status and result of one of the caller's jobs."""
  record = await service.get_job(user_id, job_id)
  return JobStatusResponse(job=JobView.from_record(record))
