"""Shared FastAPI dependencies wiring the generation service."""

from __future__ import annotations

from functools import lru_cache

from fastapi import Depends

from proposal_engine.ai.backoff import RetryController
from proposal_engine.ai.orchestrator import DocumentOrchestrator
from proposal_engine.ai.prompts import PromptSource, TemplatePromptSource
from proposal_engine.ai.providers.openrouter import OpenRouterTransport, UpstreamTransport
from proposal_engine.config import Settings, get_settings
from proposal_engine.jobs.worker import JobProcessor
from proposal_engine.services.generation import GenerationService
from proposal_engine.services.runtime_config import GenerationConfig, SettingsGenerationConfig, UserKeyLookup
from proposal_engine.storage.factory import build_jobs_repo, build_user_key_lookup
from proposal_engine.storage.jobs_repo import JobsRepository


@lru_cache(maxsize=1)
def get_jobs_repo() -> JobsRepository:
  return build_jobs_repo(get_settings())


@lru_cache(maxsize=1)
def get_transport() -> OpenRouterTransport:
  """Process-wide upstream client; closed by the lifespan on shutdown."""
  settings = get_settings()
  return OpenRouterTransport(base_url=settings.openrouter_base_url, referer=settings.openrouter_referer, title=settings.openrouter_title, timeout=settings.upstream_timeout_seconds)


@lru_cache(maxsize=1)
def get_user_key_lookup() -> UserKeyLookup | None:
  return build_user_key_lookup(get_settings())


def get_generation_config(
  settings: Settings = Depends(get_settings),  # noqa: B008
  user_keys: UserKeyLookup | None = Depends(get_user_key_lookup),  # noqa: B008
) -> GenerationConfig:
  return SettingsGenerationConfig(settings, user_keys=user_keys)


def get_prompt_source() -> PromptSource:
  return TemplatePromptSource()


def get_retry_controller(settings: Settings = Depends(get_settings)) -> RetryController:  # noqa: B008
  return RetryController(max_retries=settings.retry_max_retries, base_delay=settings.retry_base_delay_seconds)


def get_generation_service(
  settings: Settings = Depends(get_settings),  # noqa: B008
  repo: JobsRepository = Depends(get_jobs_repo),  # noqa: B008
  transport: UpstreamTransport = Depends(get_transport),  # noqa: B008
  config: GenerationConfig = Depends(get_generation_config),  # noqa: B008
  prompts: PromptSource = Depends(get_prompt_source),  # noqa: B008
  retry: RetryController = Depends(get_retry_controller),  # noqa: B008
) -> GenerationService:
  """Assemble the service for one request from shared collaborators."""
  orchestrator = DocumentOrchestrator(transport=transport, prompts=prompts, config=config, retry=retry)
  processor = JobProcessor(repo=repo, orchestrator=orchestrator)
  return GenerationService(settings=settings, processor=processor, orchestrator=orchestrator)
