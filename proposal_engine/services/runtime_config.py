"""Model selection and credential resolution for generation actions."""

from __future__ import annotations

import logging
from typing import Protocol

from proposal_engine.ai.errors import MISSING_API_KEY_MESSAGE, ConfigurationError
from proposal_engine.config import Settings

logger = logging.getLogger(__name__)


class GenerationConfig(Protocol):
  """Injected source of per-action models and per-user credentials."""

  def resolve_model(self, action: str) -> str: ...

  async def resolve_api_key(self, user_id: str) -> str: ...


class UserKeyLookup(Protocol):
  """Looks up a caller's own provider key, if they configured one."""

  async def get_openrouter_key(self, user_id: str) -> str | None: ...


class SettingsGenerationConfig:
  """Resolve models from settings and keys from the caller first, then the shared key."""

  def __init__(self, settings: Settings, *, user_keys: UserKeyLookup | None = None) -> None:
    self._shared_key = settings.openrouter_api_key
    self._user_keys = user_keys
    self._models = {
      "generate_goals": settings.goals_model,
      "generate_sow": settings.sow_model,
      "generate_proposal": settings.proposal_model,
      "stream_proposal": settings.proposal_model,
      "analyze_focus_areas": settings.focus_model,
    }

  def resolve_model(self, action: str) -> str:
    try:
      return self._models[action]
    except KeyError as exc:
      raise ConfigurationError(f"No model configured for action: {action}") from exc

  async def resolve_api_key(self, user_id: str) -> str:
    if self._user_keys is not None:
      try:
        user_key = await self._user_keys.get_openrouter_key(user_id)
      except Exception as exc:  # noqa: BLE001
        # Fall back to the shared key when the lookup itself fails.
        logger.warning("User key lookup failed user_id=%s: %s", user_id, exc)
        user_key = None
      if user_key and user_key.strip():
        return user_key.strip()

    if self._shared_key:
      return self._shared_key

    raise ConfigurationError(MISSING_API_KEY_MESSAGE)
