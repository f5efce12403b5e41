"""initial_schema

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19 00:00:00.000000 UTC

Creates the fortune_requests ledger table.
"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "fortune_requests",
        sa.Column("id", sa.String(36), nullable=False, comment="UUID row identifier"),
        sa.Column("user_id", sa.String(64), nullable=False, comment="LINE userId of the requester"),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("birth", sa.String(10), nullable=False),
        sa.Column("theme", sa.String(16), nullable=False),
        sa.Column("report", sa.Text(), nullable=False, comment="Generated draft awaiting operator review"),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_fortune_requests_user_id", "fortune_requests", ["user_id"], unique=False)
    op.create_index("ix_fortune_requests_status", "fortune_requests", ["status"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_fortune_requests_status", table_name="fortune_requests")
    op.drop_index("ix_fortune_requests_user_id", table_name="fortune_requests")
    op.drop_table("fortune_requests")
