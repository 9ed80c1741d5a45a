"""Domain models for document generation jobs."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal

JobStatus = Literal["pending", "processing", "completed", "failed"]
JobAction = Literal["generate_goals", "generate_sow", "generate_proposal", "stream_proposal"]


@dataclass
class JobRecord:
  """Represents one generation request persisted for asynchronous execution."""

  job_id: str
  user_id: str
  action: JobAction
  input: dict[str, Any]
  status: JobStatus
  created_at: str
  started_at: str | None = None
  completed_at: str | None = None
  output_content: str | None = None
  output_usage: dict[str, int] | None = None
  error_message: str | None = None
