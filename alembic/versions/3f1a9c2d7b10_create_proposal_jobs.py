"""Create proposal_jobs table.

Revision ID: 3f1a9c2d7b10
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "3f1a9c2d7b10"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
  """Upgrade schema."""
  op.create_table(
    "proposal_jobs",
    sa.Column("job_id", sa.String(), nullable=False),
    sa.Column("user_id", sa.String(), nullable=False),
    sa.Column("action", sa.String(), nullable=False),
    sa.Column("input_json", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
    sa.Column("status", sa.String(), server_default=sa.text("'pending'"), nullable=False),
    sa.Column("output_content", sa.Text(), nullable=True),
    sa.Column("output_usage", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    sa.Column("error_message", sa.Text(), nullable=True),
    sa.Column("created_at", sa.String(), server_default=sa.text("""to_char((now() AT TIME ZONE 'UTC'), 'YYYY-MM-DD"T"HH24:MI:SS"Z"')"""), nullable=False),
    sa.Column("started_at", sa.String(), nullable=True),
    sa.Column("completed_at", sa.String(), nullable=True),
    sa.PrimaryKeyConstraint("job_id"),
  )
  op.create_index(op.f("ix_proposal_jobs_user_id"), "proposal_jobs", ["user_id"], unique=False)
  op.create_index("ix_proposal_jobs_status_created_at", "proposal_jobs", ["status", "created_at"], unique=False)


def downgrade() -> None:
  """Downgrade schema."""
  op.drop_index("ix_proposal_jobs_status_created_at", table_name="proposal_jobs")
  op.drop_index(op.f("ix_proposal_jobs_user_id"), table_name="proposal_jobs")
  op.drop_table("proposal_jobs")
