"""Attendance domain model."""

from datetime import date, datetime
from enum import StrEnum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from attendance_api.exceptions import ConflictError


class AttendanceStatus(StrEnum):
    """Daily attendance status enum."""

    PRESENT = "present"
    IN_PROGRESS = "in_progress"
    ABSENT = "absent"
    HOLIDAY = "holiday"


class AttendanceSource(StrEnum):
    """Origin of a daily attendance record."""

    MANUAL = "manual"
    PROVIDER = "provider"
    BIOMETRIC = "biometric"
    IMPORT = "import"


class AttendanceFlag(StrEnum):
    """Non-fatal observations attached to a record."""

    MISSING_CHECKOUT = "missing_checkout"  # Closed day with a single punch
    LATE = "late"  # Check-in after the start of day plus grace period


DedupKey = tuple[UUID, date, AttendanceSource]


class DailyAttendanceRecord(BaseModel):
    """One logical attendance record per identity, day and source."""

    model_config = ConfigDict(from_attributes=True)

    local_identity_id: UUID
    date: date
    check_in_at: datetime | None = None
    check_out_at: datetime | None = None
    work_minutes: int = Field(default=0, ge=0)
    status: AttendanceStatus
    source: AttendanceSource = AttendanceSource.PROVIDER
    punch_count: int = Field(default=0, ge=0)
    flags: list[AttendanceFlag] = Field(default_factory=list)

    @property
    def dedup_key(self) -> DedupKey:
        return (self.local_identity_id, self.date, self.source)


def ensure_write_allowed(
    existing_source: AttendanceSource | str | None,
    incoming: DailyAttendanceRecord,
) -> None:
    """Apply the source precedence rule for one (identity, day) slot.

    A manual record is only ever replaced by another manual record. Every
    other combination is a full overwrite.

    Raises:
        ConflictError: If ``incoming`` would overwrite a manual record
    """
    if existing_source is None:
        return
    if AttendanceSource(existing_source) == AttendanceSource.MANUAL and incoming.source != AttendanceSource.MANUAL:
        raise ConflictError(incoming.local_identity_id, incoming.date, AttendanceSource.MANUAL.value)
