"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from proposal_engine.utils.env import default_env_path, load_env_file

load_env_file(default_env_path(), override=False)

DEFAULT_DOCUMENT_MODEL = "anthropic/claude-3-5-sonnet-20241022"
DEFAULT_FOCUS_MODEL = "anthropic/claude-haiku-4.5"
_JOBS_BACKENDS = {"postgres", "memory"}


@dataclass(frozen=True)
class Settings:
  """Typed settings for the proposal engine service."""

  environment: str
  allowed_origins: tuple[str, ...]
  debug: bool
  log_max_bytes: int
  log_backup_count: int
  log_http_4xx: bool
  pg_dsn: str | None
  jobs_backend: str
  openrouter_api_key: str | None
  openrouter_base_url: str
  openrouter_referer: str | None
  openrouter_title: str | None
  upstream_timeout_seconds: float
  goals_model: str
  sow_model: str
  proposal_model: str
  focus_model: str
  retry_max_retries: int
  retry_base_delay_seconds: float
  sync_timeout_seconds: float
  job_status_timeout_seconds: float
  background_start_delay_seconds: float
  processing_lease_seconds: float
  firebase_project_id: str | None
  firebase_service_account_json_path: str | None


@dataclass(frozen=True)
class DatabaseSettings:
  """Typed settings for database connectivity."""

  debug: bool
  pg_dsn: str | None


_TRUTHY = frozenset({"1", "true", "yes", "on"})


def _parse_origins(raw: str | None) -> tuple[str, ...]:
  """Split the comma-separated CORS allow-list; it must be explicit and wildcard-free."""
  origins = tuple(part.strip() for part in (raw or "").split(",") if part.strip())
  if not origins:
    raise ValueError("PROPOSAL_ALLOWED_ORIGINS must list at least one origin.")
  if "*" in origins:
    raise ValueError("PROPOSAL_ALLOWED_ORIGINS must not include wildcard origins.")
  return origins


def _parse_bool(raw: str | None) -> bool:
  return raw is not None and raw.strip().lower() in _TRUTHY


def _optional_str(raw: str | None) -> str | None:
  return (raw or "").strip() or None


def _positive_float(name: str, default: str) -> float:
  value = float(os.getenv(name, default))
  if value <= 0:
    raise ValueError(f"{name} must be a positive number.")
  return value


def _bounded_int(name: str, default: str, *, minimum: int) -> int:
  value = int(os.getenv(name, default))
  if value < minimum:
    raise ValueError(f"{name} must be at least {minimum}.")
  return value


def _dsn() -> str | None:
  return os.getenv("PROPOSAL_PG_DSN") or os.getenv("DATABASE_URL")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  """Read and validate the environment once per process."""
  jobs_backend = (os.getenv("PROPOSAL_JOBS_BACKEND") or "postgres").strip().lower()
  if jobs_backend not in _JOBS_BACKENDS:
    raise ValueError("PROPOSAL_JOBS_BACKEND must be 'postgres' or 'memory'.")

  # Zero starts background jobs immediately.
  background_start_delay_seconds = float(os.getenv("PROPOSAL_BACKGROUND_START_DELAY_SECONDS", "0.1"))
  if background_start_delay_seconds < 0:
    raise ValueError("PROPOSAL_BACKGROUND_START_DELAY_SECONDS must not be negative.")

  default_model = _optional_str(os.getenv("PROPOSAL_DEFAULT_MODEL")) or DEFAULT_DOCUMENT_MODEL

  return Settings(
    environment=os.getenv("PROPOSAL_ENV", "development").lower(),
    allowed_origins=_parse_origins(os.getenv("PROPOSAL_ALLOWED_ORIGINS")),
    debug=_parse_bool(os.getenv("PROPOSAL_DEBUG")),
    log_max_bytes=_bounded_int("PROPOSAL_LOG_MAX_BYTES", "5242880", minimum=1),
    log_backup_count=_bounded_int("PROPOSAL_LOG_BACKUP_COUNT", "10", minimum=0),
    log_http_4xx=_parse_bool(os.getenv("PROPOSAL_LOG_HTTP_4XX")),
    pg_dsn=_dsn(),
    jobs_backend=jobs_backend,
    openrouter_api_key=_optional_str(os.getenv("OPENROUTER_API_KEY")),
    openrouter_base_url=_optional_str(os.getenv("PROPOSAL_OPENROUTER_BASE_URL")) or "https://openrouter.ai/api/v1",
    openrouter_referer=_optional_str(os.getenv("PROPOSAL_OPENROUTER_REFERER")),
    openrouter_title=_optional_str(os.getenv("PROPOSAL_OPENROUTER_TITLE")),
    upstream_timeout_seconds=_positive_float("PROPOSAL_UPSTREAM_TIMEOUT_SECONDS", "300"),
    goals_model=_optional_str(os.getenv("PROPOSAL_GOALS_MODEL")) or default_model,
    sow_model=_optional_str(os.getenv("PROPOSAL_SOW_MODEL")) or default_model,
    proposal_model=_optional_str(os.getenv("PROPOSAL_PROPOSAL_MODEL")) or default_model,
    focus_model=_optional_str(os.getenv("PROPOSAL_FOCUS_MODEL")) or DEFAULT_FOCUS_MODEL,
    retry_max_retries=_bounded_int("PROPOSAL_RETRY_MAX_RETRIES", "3", minimum=0),
    retry_base_delay_seconds=_positive_float("PROPOSAL_RETRY_BASE_DELAY_SECONDS", "5"),
    sync_timeout_seconds=_positive_float("PROPOSAL_SYNC_TIMEOUT_SECONDS", "90"),
    job_status_timeout_seconds=_positive_float("PROPOSAL_JOB_STATUS_TIMEOUT_SECONDS", "10"),
    background_start_delay_seconds=background_start_delay_seconds,
    processing_lease_seconds=_positive_float("PROPOSAL_PROCESSING_LEASE_SECONDS", "900"),
    firebase_project_id=_optional_str(os.getenv("PROPOSAL_FIREBASE_PROJECT_ID")),
    firebase_service_account_json_path=_optional_str(os.getenv("PROPOSAL_FIREBASE_SERVICE_ACCOUNT_JSON_PATH")),
  )


@lru_cache(maxsize=1)
def get_database_settings() -> DatabaseSettings:
  """Database settings only; usable from migrations without the web configuration."""
  return DatabaseSettings(debug=_parse_bool(os.getenv("PROPOSAL_DEBUG")), pg_dsn=_dsn())
