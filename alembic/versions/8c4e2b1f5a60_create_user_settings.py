"""Create user_settings table.

Revision ID: 8c4e2b1f5a60
Revises: 3f1a9c2d7b10
Create Date: 2026-10-19
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "8c4e2b1f5a60"
down_revision = "3f1a9c2d7b10"
branch_labels = None
depends_on = None


def upgrade() -> None:
  """Upgrade schema."""
  op.create_table(
    "user_settings",
    sa.Column("user_id", sa.String(), nullable=False),
    sa.Column("ai_provider_keys", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    sa.Column("updated_at", sa.String(), nullable=True),
    sa.PrimaryKeyConstraint("user_id"),
  )


def downgrade() -> None:
  """Downgrade schema."""
  op.drop_table("user_settings")
