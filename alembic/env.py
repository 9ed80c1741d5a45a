"""Alembic environment for the proposal job store, run through the asyncpg driver."""

import asyncio
import logging
import time
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import async_engine_from_config

import proposal_engine.schema  # noqa: F401  registers the tables on Base.metadata
from proposal_engine.core.database import Base, database_url

alembic_config = context.config
if alembic_config.config_file_name is not None:
  fileConfig(alembic_config.config_file_name)

logger = logging.getLogger("alembic.env")


class _RevisionTimer:
  """Logs how long each applied revision took."""

  def __init__(self) -> None:
    self._mark = time.perf_counter()

  def restart(self) -> None:
    self._mark = time.perf_counter()

  def __call__(self, *, ctx: object, step: object, heads: set[str], run_args: dict[str, object]) -> None:
    revision = getattr(step, "up_revision_id", None) or "?"
    logger.info("Revision %s applied in %.3fs", revision, time.perf_counter() - self._mark)
    self.restart()


def _dsn() -> str:
  dsn = database_url()
  if dsn is None:
    raise RuntimeError("Set PROPOSAL_PG_DSN (or DATABASE_URL) before running migrations.")
  return dsn


def _configure_and_run(**options: object) -> None:
  context.configure(target_metadata=Base.metadata, compare_type=True, **options)
  with context.begin_transaction():
    context.run_migrations()


def _migrate(connection: Connection) -> None:
  timer = _RevisionTimer()
  context.configure(connection=connection, target_metadata=Base.metadata, compare_type=True, on_version_apply=timer)
  migration_context = context.get_context()
  logger.info("Migrating proposal_jobs schema from revision %s", migration_context.get_current_revision() or "base")
  timer.restart()
  with context.begin_transaction():
    context.run_migrations()
  logger.info("Schema now at %s", ", ".join(migration_context.get_current_heads()) or "base")


async def _migrate_online() -> None:
  section = dict(alembic_config.get_section(alembic_config.config_ini_section) or {})
  section["sqlalchemy.url"] = _dsn()
  engine = async_engine_from_config(section, prefix="sqlalchemy.", poolclass=pool.NullPool)
  try:
    async with engine.connect() as connection:
      await connection.run_sync(_migrate)
  finally:
    await engine.dispose()


if context.is_offline_mode():
  # Offline mode renders SQL without a connection.
  _configure_and_run(url=_dsn(), literal_binds=True, dialect_opts={"paramstyle": "named"})
else:
  asyncio.run(_migrate_online())
