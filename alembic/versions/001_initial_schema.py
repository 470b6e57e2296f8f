"""initial schema - discovery, lexicon, threads and proposals

Revision ID: 001_initial
Revises: None
Create Date: 2026-10-17

Creates every table from the SQLAlchemy models on the migration connection,
then seeds the built-in status catalog.
"""
from typing import Sequence, Union

from alembic import op
from sqlalchemy.orm import Session

revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    from plannercrm.models import Base
    from plannercrm.services.signal_lexicon import seed_statuses

    bind = op.get_bind()
    Base.metadata.create_all(bind=bind, checkfirst=True)
    seed_statuses(Session(bind=bind))


def downgrade() -> None:
    """Drop all tables. DESTRUCTIVE: dev/test environments only."""
    from plannercrm.models import Base

    Base.metadata.drop_all(bind=op.get_bind())
