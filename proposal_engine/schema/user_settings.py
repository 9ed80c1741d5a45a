from __future__ import annotations

from sqlalchemy import String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from proposal_engine.core.database import Base


class UserSettings(Base):
  """Per-user preferences; ``ai_provider_keys`` maps a provider name to the caller's own API key."""

  __tablename__ = "user_settings"

  user_id: Mapped[str] = mapped_column(String, primary_key=True)
  ai_provider_keys: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
  updated_at: Mapped[str | None] = mapped_column(String, nullable=True)
