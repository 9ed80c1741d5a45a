"""Document generation endpoint."""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

from fastapi import APIRouter, Depends, status
from fastapi.responses import StreamingResponse

from proposal_engine.api.deps import get_generation_service
from proposal_engine.api.models import FocusArea, FocusAreasResponse, GenerateRequest, JobAcceptedResponse, SyncGenerationResponse, UsageResponse
from proposal_engine.core.json import MsgspecJSONResponse, encode_sse_event
from proposal_engine.core.security import get_current_user_id
from proposal_engine.services.generation import GenerationService, JobAccepted, StreamOutcome

router = APIRouter()

# Proxies must not buffer the live stream.
_SSE_HEADERS = {"Cache-Control": "no-cache", "X-Accel-Buffering": "no"}


async def _sse_body(events: AsyncIterator[dict[str, Any]]) -> AsyncIterator[bytes]:
  async for event in events:
    yield encode_sse_event(event)


@router.post("/generate", response_model=None)
async def generate_document(  # noqa: B008
  request: GenerateRequest,
  user_id: str = Depends(get_current_user_id),  # noqa: B008
  service: GenerationService = Depends(get_generation_service),  # noqa: B008
) -> FocusAreasResponse | SyncGenerationResponse | MsgspecJSONResponse | StreamingResponse:
  """Generate goals, a statement of work, a proposal or focus areas for the caller."""
  payload = request.job_input()
  if request.action == "analyze_focus_areas":
    focus_areas = await service.analyze_focus_areas(payload, user_id)
    return FocusAreasResponse(focus_areas=[FocusArea.model_validate(area) for area in focus_areas])

  outcome = await service.generate(request.action, payload, user_id, async_requested=request.async_, stream_requested=request.stream)
  if isinstance(outcome, StreamOutcome):
    return StreamingResponse(_sse_body(outcome.events), media_type="text/event-stream", headers={**_SSE_HEADERS, "X-Job-Id": outcome.job.job_id})

  if isinstance(outcome, JobAccepted):
    accepted = JobAcceptedResponse(job_id=outcome.job.job_id, status=outcome.job.status)
    return MsgspecJSONResponse(status_code=status.HTTP_202_ACCEPTED, content=accepted.model_dump())

  result = outcome.result
  usage = UsageResponse(**result.usage.as_dict())
  return SyncGenerationResponse(content=result.content, usage=usage, warning=result.warning)
