"""Add poll window resume columns to users

Revision ID: 002_poll_resume
Revises: 001_initial
Create Date: 2026-10-17
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "002_poll_resume"
down_revision: Union[str, None] = "001_initial"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # 001 builds from the current models, so a fresh database already has them
    existing = {c["name"] for c in sa.inspect(op.get_bind()).get_columns("users")}
    if "poll_cursor" not in existing:
        op.add_column("users", sa.Column("poll_cursor", sa.String(255), nullable=True))
    if "poll_window_max_at" not in existing:
        op.add_column("users", sa.Column("poll_window_max_at", sa.DateTime(), nullable=True))


def downgrade() -> None:
    op.drop_column("users", "poll_window_max_at")
    op.drop_column("users", "poll_cursor")
