"""Shared fixtures: settings for the app import, a fake upstream and an API client."""

from __future__ import annotations

import os
from dataclasses import replace

# Ensure required settings are available before importing the app.
os.environ["PROPOSAL_ALLOWED_ORIGINS"] = "http://localhost"
os.environ["PROPOSAL_JOBS_BACKEND"] = "memory"
os.environ["OPENROUTER_API_KEY"] = "test-shared-key"

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from proposal_engine.ai.backoff import RetryController  # noqa: E402
from proposal_engine.ai.orchestrator import DocumentOrchestrator  # noqa: E402
from proposal_engine.ai.prompts import TemplatePromptSource  # noqa: E402
from proposal_engine.api.deps import get_jobs_repo, get_retry_controller, get_transport, get_user_key_lookup  # noqa: E402
from proposal_engine.config import Settings, get_settings  # noqa: E402
from proposal_engine.core.security import get_current_user_id  # noqa: E402
from proposal_engine.jobs.worker import JobProcessor  # noqa: E402
from proposal_engine.main import app  # noqa: E402
from proposal_engine.services.runtime_config import SettingsGenerationConfig  # noqa: E402
from proposal_engine.storage.memory_jobs_repo import InMemoryJobsRepository  # noqa: E402
from tests.support import TEST_USER_ID, FakeTransport, no_sleep  # noqa: E402


@pytest.fixture
def anyio_backend():
  return "asyncio"


@pytest.fixture
def settings() -> Settings:
  return replace(get_settings(), background_start_delay_seconds=0.0)


@pytest.fixture
def transport() -> FakeTransport:
  return FakeTransport()


@pytest.fixture
def jobs_repo() -> InMemoryJobsRepository:
  return InMemoryJobsRepository()


@pytest.fixture
def sleeps() -> list[float]:
  return []


@pytest.fixture
def retry(sleeps: list[float]) -> RetryController:
  async def _record_sleep(delay: float) -> None:
    sleeps.append(delay)

  return RetryController(max_retries=3, base_delay=5.0, sleep=_record_sleep)


@pytest.fixture
def orchestrator(transport: FakeTransport, settings: Settings, retry: RetryController) -> DocumentOrchestrator:
  return DocumentOrchestrator(transport=transport, prompts=TemplatePromptSource(), config=SettingsGenerationConfig(settings), retry=retry)


@pytest.fixture
def processor(jobs_repo: InMemoryJobsRepository, orchestrator: DocumentOrchestrator) -> JobProcessor:
  return JobProcessor(repo=jobs_repo, orchestrator=orchestrator)


@pytest.fixture
async def async_client(settings: Settings, transport: FakeTransport, jobs_repo: InMemoryJobsRepository):
  app.dependency_overrides[get_settings] = lambda: settings
  app.dependency_overrides[get_transport] = lambda: transport
  app.dependency_overrides[get_jobs_repo] = lambda: jobs_repo
  app.dependency_overrides[get_user_key_lookup] = lambda: None
  app.dependency_overrides[get_retry_controller] = lambda: RetryController(max_retries=3, base_delay=5.0, sleep=no_sleep)
  app.dependency_overrides[get_current_user_id] = lambda: TEST_USER_ID
  async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
    yield client
  app.dependency_overrides.clear()
