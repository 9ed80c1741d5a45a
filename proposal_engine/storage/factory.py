"""Select the jobs repository implementation from settings."""

from __future__ import annotations

import logging

from proposal_engine.config import Settings
from proposal_engine.services.runtime_config import UserKeyLookup
from proposal_engine.storage.jobs_repo import JobsRepository

logger = logging.getLogger(__name__)


def build_jobs_repo(settings: Settings) -> JobsRepository:
  """Return the configured repository; the in-memory store is for local runs and tests."""
  if settings.jobs_backend == "memory":
    from proposal_engine.storage.memory_jobs_repo import InMemoryJobsRepository

    logger.warning("Using the in-memory jobs store; jobs are lost on restart.")
    return InMemoryJobsRepository(lease_seconds=settings.processing_lease_seconds)

  from proposal_engine.storage.postgres_jobs_repo import PostgresJobsRepository

  return PostgresJobsRepository(lease_seconds=settings.processing_lease_seconds)


def build_user_key_lookup(settings: Settings) -> UserKeyLookup | None:
  """Return the ``user_settings`` key lookup; the in-memory backend has no user store."""
  if settings.jobs_backend == "memory":
    return None

  from proposal_engine.storage.user_keys_repo import PostgresUserKeyLookup

  return PostgresUserKeyLookup()
