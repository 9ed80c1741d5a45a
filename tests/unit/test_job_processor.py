"""Job lifecycle transitions driven through the in-memory repository."""

from __future__ import annotations

import asyncio
from dataclasses import replace

import pytest

from proposal_engine.ai.errors import JobNotFoundError, UpstreamError
from proposal_engine.jobs.worker import CLIENT_DISCONNECTED_MESSAGE, JobProcessor, wait_for_background_tasks
from proposal_engine.storage.memory_jobs_repo import InMemoryJobsRepository
from tests.support import TEST_USER_ID, FakeTransport, FakeUpstreamStream, anthropic_lines, completion_body, openai_lines

GOALS_INPUT = {"transcripts": ["We want to double inbound leads by Q3."], "company_name": "Acme"}


@pytest.mark.anyio
async def test_execute_streams_and_completes(processor: JobProcessor, transport: FakeTransport, jobs_repo: InMemoryJobsRepository) -> None:
  transport.streams.append(FakeUpstreamStream(openai_lines(["  Grow ", "leads.  "], usage=(100, 20))))
  job = await processor.create_job(TEST_USER_ID, "generate_goals", GOALS_INPUT)
  assert job.status == "pending"

  claimed = await processor.claim(TEST_USER_ID, job.job_id)
  assert claimed.status == "processing"
  assert claimed.started_at is not None

  record = await processor.execute(claimed)
  assert record is not None
  assert record.status == "completed"
  assert record.output_content == "Grow leads."
  assert record.output_usage == {"input_tokens": 100, "output_tokens": 20, "total_tokens": 120}
  assert record.completed_at is not None
  assert transport.opened[0].closed
  request, api_key = transport.requests[0]
  assert request.stream is True
  assert request.max_tokens == 8192
  assert api_key == "test-shared-key"


@pytest.mark.anyio
async def test_execute_persists_failure_instead_of_raising(processor: JobProcessor, transport: FakeTransport) -> None:
  transport.streams.append(UpstreamError("OpenRouter error: model not found", status_code=404))
  job = await processor.claim(TEST_USER_ID, (await processor.create_job(TEST_USER_ID, "generate_goals", GOALS_INPUT)).job_id)

  record = await processor.execute(job)
  assert record is not None
  assert record.status == "failed"
  assert record.error_message == "OpenRouter error: model not found"
  assert record.output_content is None


@pytest.mark.anyio
async def test_stream_ending_without_terminal_fails_the_job(processor: JobProcessor, transport: FakeTransport) -> None:
  transport.streams.append(FakeUpstreamStream(openai_lines(["half"])[:3]))
  job = await processor.claim(TEST_USER_ID, (await processor.create_job(TEST_USER_ID, "generate_goals", GOALS_INPUT)).job_id)

  record = await processor.execute(job)
  assert record is not None
  assert record.status == "failed"
  assert record.output_content is None


@pytest.mark.anyio
async def test_non_streaming_execute_uses_completion_call(processor: JobProcessor, transport: FakeTransport) -> None:
  transport.completions.append(completion_body("Goals text", usage=(3, 4)))
  job = await processor.claim(TEST_USER_ID, (await processor.create_job(TEST_USER_ID, "generate_goals", GOALS_INPUT)).job_id)
  record = await processor.execute(job, streaming=False)
  assert record is not None
  assert record.output_content == "Goals text"
  assert transport.requests[0][0].stream is False


@pytest.mark.anyio
async def test_stream_events_yield_chunks_then_done(processor: JobProcessor, transport: FakeTransport, jobs_repo: InMemoryJobsRepository) -> None:
  transport.streams.append(FakeUpstreamStream(anthropic_lines(["# Scope", "\nBuild it"])))
  job = await processor.claim(TEST_USER_ID, (await processor.create_job(TEST_USER_ID, "generate_sow", {"goals": "Ship"})).job_id)

  events = [event async for event in processor.stream_events(job)]
  assert events == [{"type": "chunk", "text": "# Scope"}, {"type": "chunk", "text": "\nBuild it"}, {"type": "done", "content": "# Scope\nBuild it"}]
  stored = await jobs_repo.get_job(job.job_id, TEST_USER_ID)
  assert stored is not None and stored.status == "completed"


@pytest.mark.anyio
async def test_stream_events_report_errors_as_a_final_event(processor: JobProcessor, transport: FakeTransport, jobs_repo: InMemoryJobsRepository) -> None:
  transport.streams.append(FakeUpstreamStream(openai_lines(["partial"])[:3], error=ConnectionResetError("reset")))
  job = await processor.claim(TEST_USER_ID, (await processor.create_job(TEST_USER_ID, "generate_proposal", {"goals": "g"})).job_id)

  events = [event async for event in processor.stream_events(job)]
  assert events[0] == {"type": "chunk", "text": "partial"}
  assert events[-1]["type"] == "error"
  assert "reset" in events[-1]["error"]
  stored = await jobs_repo.get_job(job.job_id, TEST_USER_ID)
  assert stored is not None and stored.status == "failed"


@pytest.mark.anyio
async def test_abandoned_stream_marks_job_failed(processor: JobProcessor, transport: FakeTransport, jobs_repo: InMemoryJobsRepository) -> None:
  transport.streams.append(FakeUpstreamStream(openai_lines(["one", "two", "three"])))
  job = await processor.claim(TEST_USER_ID, (await processor.create_job(TEST_USER_ID, "generate_proposal", {"goals": "g"})).job_id)

  events = processor.stream_events(job)
  first = await anext(events)
  assert first == {"type": "chunk", "text": "one"}
  await events.aclose()
  await wait_for_background_tasks(timeout=5)

  stored = await jobs_repo.get_job(job.job_id, TEST_USER_ID)
  assert stored is not None
  assert stored.status == "failed"
  assert stored.error_message == CLIENT_DISCONNECTED_MESSAGE
  assert transport.opened[0].closed


@pytest.mark.anyio
async def test_claim_is_exclusive(processor: JobProcessor) -> None:
  job = await processor.create_job(TEST_USER_ID, "generate_goals", GOALS_INPUT)

  results = await asyncio.gather(*(processor.claim(TEST_USER_ID, job.job_id) for _ in range(5)), return_exceptions=True)
  claimed = [result for result in results if not isinstance(result, BaseException)]
  assert len(claimed) == 1
  assert all(isinstance(result, JobNotFoundError) for result in results if isinstance(result, BaseException))


@pytest.mark.anyio
async def test_concurrent_claim_next_hands_out_a_job_once(processor: JobProcessor) -> None:
  job = await processor.create_job(TEST_USER_ID, "generate_goals", GOALS_INPUT)

  results = await asyncio.gather(processor.claim(TEST_USER_ID), processor.claim(TEST_USER_ID), return_exceptions=True)
  claimed = [result for result in results if not isinstance(result, BaseException)]
  failures = [result for result in results if isinstance(result, BaseException)]
  assert [record.job_id for record in claimed] == [job.job_id]
  assert len(failures) == 1
  assert isinstance(failures[0], JobNotFoundError)
  assert str(failures[0]) == "No pending jobs found"


@pytest.mark.anyio
async def test_claim_next_returns_oldest_pending_for_the_caller(processor: JobProcessor, jobs_repo: InMemoryJobsRepository) -> None:
  older = await processor.create_job(TEST_USER_ID, "generate_sow", {"goals": "a"})
  await processor.create_job("someone-else", "generate_sow", {"goals": "b"})
  await processor.create_job(TEST_USER_ID, "generate_sow", {"goals": "c"})
  # Timestamps have second resolution; force an explicit order.
  jobs_repo._jobs[older.job_id] = replace(jobs_repo._jobs[older.job_id], created_at="2000-01-01T00:00:00Z")

  claimed = await processor.claim(TEST_USER_ID)
  assert claimed.job_id == older.job_id

  await processor.claim(TEST_USER_ID)
  with pytest.raises(JobNotFoundError, match="No pending jobs found"):
    await processor.claim(TEST_USER_ID)


@pytest.mark.anyio
async def test_terminal_state_is_written_once(processor: JobProcessor, transport: FakeTransport, jobs_repo: InMemoryJobsRepository) -> None:
  transport.streams.append(FakeUpstreamStream(openai_lines(["done"])))
  job = await processor.claim(TEST_USER_ID, (await processor.create_job(TEST_USER_ID, "generate_goals", GOALS_INPUT)).job_id)
  await processor.execute(job)

  assert await jobs_repo.fail_job(job.job_id, error_message="late") is None
  stored = await jobs_repo.get_job(job.job_id, TEST_USER_ID)
  assert stored is not None and stored.status == "completed"


@pytest.mark.anyio
async def test_jobs_are_scoped_to_their_owner(processor: JobProcessor) -> None:
  job = await processor.create_job(TEST_USER_ID, "generate_goals", GOALS_INPUT)
  with pytest.raises(JobNotFoundError):
    await processor.get_job("intruder", job.job_id)
  with pytest.raises(JobNotFoundError):
    await processor.claim("intruder", job.job_id)
