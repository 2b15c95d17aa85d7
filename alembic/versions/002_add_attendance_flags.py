"""Add flags to daily attendance

Revision ID: 002
Revises: 001
Create Date: 2026-10-08 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column(
        "daily_attendance",
        sa.Column("flags", postgresql.JSONB(), nullable=True),
    )


def downgrade() -> None:
    op.drop_column("daily_attendance", "flags")
