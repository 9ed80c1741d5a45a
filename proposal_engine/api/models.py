from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, StrictStr, model_validator

from proposal_engine.jobs.models import JobRecord, JobStatus

GenerationAction = Literal["generate_goals", "generate_sow", "generate_proposal", "stream_proposal", "analyze_focus_areas"]

_TRANSCRIPT_ACTIONS = {"generate_goals", "analyze_focus_areas"}
# Flags and routing fields that never become part of a job's input.
_CONTROL_FIELDS = {"action", "async_", "stream"}


class GenerateRequest(BaseModel):
  """Request body for every generation action."""

  action: GenerationAction
  transcripts: list[StrictStr] | None = Field(default=None, description="Call transcripts; required for goals and focus-area analysis.")
  goals: StrictStr | None = Field(default=None, description="Goals & Objectives document; required for SOW and proposal actions.")
  contact_name: StrictStr | None = None
  company_name: StrictStr | None = None
  focus_areas: list[StrictStr] | None = Field(default=None, max_length=20)
  length_target: Literal["short", "medium", "long"] | None = None
  word_limit: int | None = Field(default=None, gt=0)
  page_target: int | None = Field(default=None, gt=0)
  async_: bool | None = Field(default=None, alias="async", description="Goals only: false forces a synchronous reply.")
  stream: bool | None = Field(default=None, description="False requests background execution instead of a live stream.")
  model_config = ConfigDict(extra="forbid", populate_by_name=True)

  @model_validator(mode="after")
  def _require_action_inputs(self) -> GenerateRequest:
    if self.action in _TRANSCRIPT_ACTIONS:
      if not self.transcripts or not any(item.strip() for item in self.transcripts):
        raise ValueError(f"transcripts are required for {self.action}")
    elif not self.goals or not self.goals.strip():
      raise ValueError(f"goals are required for {self.action}")
    return self

  def job_input(self) -> dict[str, Any]:
    """Return the caller parameters persisted with a job."""
    return self.model_dump(exclude=_CONTROL_FIELDS, exclude_none=True)


class UsageResponse(BaseModel):
  input_tokens: int
  output_tokens: int
  total_tokens: int


class SyncGenerationResponse(BaseModel):
  """Inline result of a synchronous generation."""

  success: bool = True
  content: str
  usage: UsageResponse
  warning: str | None = None


class JobAcceptedResponse(BaseModel):
  """Returned with 202 when a job was queued for background execution."""

  success: bool = True
  job_id: str
  status: JobStatus
  message: str = "Job created and processing started"


class FocusArea(BaseModel):
  model_config = ConfigDict(extra="allow")

  id: str | None = None
  title: str | None = None
  description: str | None = None
  category: str | None = None


class FocusAreasResponse(BaseModel):
  success: bool = True
  focus_areas: list[FocusArea]


class JobView(BaseModel):
  id: str
  status: JobStatus
  content: str | None = None
  usage: UsageResponse | None = None
  error: str | None = None
  created_at: str
  completed_at: str | None = None

  @classmethod
  def from_record(cls, record: JobRecord) -> JobView:
    usage = UsageResponse(**record.output_usage) if record.output_usage else None
    return cls(id=record.job_id, status=record.status, content=record.output_content, usage=usage, error=record.error_message, created_at=record.created_at, completed_at=record.completed_at)


class JobStatusResponse(BaseModel):
  success: bool = True
  job: JobView


class ProcessJobRequest(BaseModel):
  job_id: StrictStr | None = None
  model_config = ConfigDict(extra="forbid")


class ProcessJobResponse(BaseModel):
  success: bool
  job: JobView
