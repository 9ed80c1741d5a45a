"""Lookup of callers' own provider keys stored in ``user_settings``."""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from proposal_engine.core.database import get_session_factory
from proposal_engine.schema.user_settings import UserSettings

logger = logging.getLogger(__name__)

OPENROUTER_PROVIDER = "openrouter"


class PostgresUserKeyLookup:
  """Read ``user_settings.ai_provider_keys[provider]`` for a caller."""

  def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
    self._session_factory = session_factory or get_session_factory()
    if self._session_factory is None:
      raise RuntimeError("Database not initialized")

  async def get_provider_key(self, user_id: str, provider: str) -> str | None:
    async with self._session_factory() as session:
      stmt = select(UserSettings.ai_provider_keys).where(UserSettings.user_id == user_id)
      keys = (await session.execute(stmt)).scalar_one_or_none()

    if not isinstance(keys, dict):
      return None
    key = keys.get(provider)
    if not isinstance(key, str) or not key.strip():
      return None
    logger.debug("Using caller-provided %s key user_id=%s", provider, user_id)
    return key.strip()

  async def get_openrouter_key(self, user_id: str) -> str | None:
    return await self.get_provider_key(user_id, OPENROUTER_PROVIDER)
