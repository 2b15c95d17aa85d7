"""Sync DTOs."""

from datetime import date

from pydantic import BaseModel, Field, model_validator

from attendance_api.models.domain.sync import SyncMode, SyncWindow

# Upper bound on a single full-window request
MAX_WINDOW_DAYS = 366


class AttendanceSyncRequest(BaseModel):
    """Attendance sync trigger.

    ``incremental`` ignores the dates. ``full`` requires both.
    """

    mode: SyncMode = SyncMode.INCREMENTAL
    start_date: date | None = None
    end_date: date | None = None

    @model_validator(mode="after")
    def validate_window(self) -> "AttendanceSyncRequest":
        if self.mode == SyncMode.FULL:
            if self.start_date is None or self.end_date is None:
                raise ValueError("start_date and end_date are required for a full sync")
            if self.end_date < self.start_date:
                raise ValueError("end_date must not be before start_date")
            if (self.end_date - self.start_date).days + 1 > MAX_WINDOW_DAYS:
                raise ValueError(f"Window cannot exceed {MAX_WINDOW_DAYS} days")
        return self

    def window(self) -> SyncWindow | None:
        if self.mode == SyncMode.INCREMENTAL:
            return None
        return SyncWindow(start=self.start_date, end=self.end_date)


class CancelResponse(BaseModel):
    """Cancel response DTO."""

    sync_type: str
    cancelled: bool = Field(description="False when no run of this type was in flight")
