"""Daily attendance ORM model."""

from datetime import date, datetime
from typing import Any
from uuid import UUID

from sqlalchemy import Date, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB, UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column

from attendance_api.models.orm.base import Base, TimestampMixin, UUIDMixin


class DailyAttendanceORM(Base, UUIDMixin, TimestampMixin):
    """Daily attendance database model.

    The table holds one row per identity and day. ``source`` records who
    owns the row; a manual row is never overwritten by provider writes.
    """

    __tablename__ = "daily_attendance"

    local_identity_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
    )
    entry_date: Mapped[date] = mapped_column(Date, nullable=False)
    check_in_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    check_out_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    work_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    source: Mapped[str] = mapped_column(String(32), nullable=False, default="provider")
    punch_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Added in migration 002; only loaded or written when the schema has it
    flags: Mapped[list[Any] | None] = mapped_column(JSONB, nullable=True, deferred=True)

    __table_args__ = (
        UniqueConstraint("local_identity_id", "entry_date", name="uq_daily_attendance_identity_date"),
        Index("idx_daily_attendance_entry_date", "entry_date"),
        Index("idx_daily_attendance_status", "status"),
    )
