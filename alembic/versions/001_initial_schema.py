"""Initial schema

Revision ID: 001
Revises:
Create Date: 2026-10-01 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    # Profiles are owned by the user directory; created here for standalone installs
    op.create_table(
        "profiles",
        sa.Column("id", postgresql.UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        if_not_exists=True,
    )
    op.create_index("idx_profiles_is_active", "profiles", ["is_active"], if_not_exists=True)
    op.create_index("idx_profiles_email", "profiles", ["email"], if_not_exists=True)

    # Identity mappings
    op.create_table(
        "identity_mappings",
        sa.Column("id", postgresql.UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("provider_code", sa.String(64), nullable=False),
        sa.Column("local_identity_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("match_score", sa.Float(), server_default=sa.text("0"), nullable=False),
        sa.Column("status", sa.String(32), nullable=False),
        sa.Column("provider_name", sa.String(255), nullable=True),
        sa.Column("provider_email", sa.String(255), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["local_identity_id"], ["profiles.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("provider_code", "local_identity_id", name="uq_identity_mappings_code_identity"),
        sa.CheckConstraint("match_score >= 0 AND match_score <= 1", name="ck_identity_mappings_score"),
    )
    op.create_index(
        "uq_identity_mappings_active_code",
        "identity_mappings",
        ["provider_code"],
        unique=True,
        postgresql_where=sa.text("status IN ('auto_mapped', 'confirmed')"),
    )
    op.create_index("idx_identity_mappings_status", "identity_mappings", ["status"])
    op.create_index("idx_identity_mappings_local_identity", "identity_mappings", ["local_identity_id"])

    # Daily attendance
    op.create_table(
        "daily_attendance",
        sa.Column("id", postgresql.UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("local_identity_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("entry_date", sa.Date(), nullable=False),
        sa.Column("check_in_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("check_out_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("work_minutes", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("status", sa.String(32), nullable=False),
        sa.Column("source", sa.String(32), server_default="provider", nullable=False),
        sa.Column("punch_count", sa.Integer(), server_default=sa.text("0"), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["local_identity_id"], ["profiles.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("local_identity_id", "entry_date", name="uq_daily_attendance_identity_date"),
        sa.CheckConstraint("work_minutes >= 0", name="ck_daily_attendance_work_minutes"),
    )
    op.create_index("idx_daily_attendance_entry_date", "daily_attendance", ["entry_date"])
    op.create_index("idx_daily_attendance_status", "daily_attendance", ["status"])

    # Sync runs
    op.create_table(
        "sync_runs",
        sa.Column("id", postgresql.UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("sync_type", sa.String(32), nullable=False),
        sa.Column("mode", sa.String(32), nullable=False),
        sa.Column("window_start", sa.Date(), nullable=True),
        sa.Column("window_end", sa.Date(), nullable=True),
        sa.Column("status", sa.String(32), server_default="running", nullable=False),
        sa.Column("records_found", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("records_processed", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("errors", postgresql.JSONB(), server_default=sa.text("'[]'::jsonb"), nullable=False),
        sa.Column("stats", postgresql.JSONB(), server_default=sa.text("'{}'::jsonb"), nullable=False),
        sa.Column("cursor_before", sa.String(64), nullable=True),
        sa.Column("cursor_after", sa.String(64), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_sync_runs_type_started", "sync_runs", ["sync_type", "started_at"])
    op.create_index("idx_sync_runs_status", "sync_runs", ["status"])

    # Sync state
    op.create_table(
        "sync_state",
        sa.Column("sync_type", sa.String(32), nullable=False),
        sa.Column("cursor", sa.String(64), nullable=True),
        sa.Column("running_run_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("last_run_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("sync_type"),
    )


def downgrade() -> None:
    op.drop_table("sync_state")
    op.drop_index("idx_sync_runs_status", table_name="sync_runs")
    op.drop_index("idx_sync_runs_type_started", table_name="sync_runs")
    op.drop_table("sync_runs")
    op.drop_index("idx_daily_attendance_status", table_name="daily_attendance")
    op.drop_index("idx_daily_attendance_entry_date", table_name="daily_attendance")
    op.drop_table("daily_attendance")
    op.drop_index("idx_identity_mappings_local_identity", table_name="identity_mappings")
    op.drop_index("idx_identity_mappings_status", table_name="identity_mappings")
    op.drop_index("uq_identity_mappings_active_code", table_name="identity_mappings")
    op.drop_table("identity_mappings")
    # profiles is left in place; it may predate this service
