"""Work calendar: which days are expected work days for whom."""

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import UTC, date, datetime, time, timedelta
from uuid import UUID
from zoneinfo import ZoneInfo

from attendance_api.config import Settings

DEFAULT_WORK_WEEKDAYS = frozenset(range(6))  # Monday to Saturday
DEFAULT_WORKDAY_START = time(10, 30)


@dataclass(frozen=True)
class WorkCalendar:
    """Calendar used to classify days and to localize punch timestamps.

    Attributes:
        tz: Zone in which calendar days are counted
        work_weekdays: Default work weekdays (Monday == 0)
        holidays: Company-wide non-work dates
        identity_weekdays: Per-identity weekday overrides
        workday_start: Local time the work day starts
        late_threshold_minutes: Grace period after ``workday_start``
    """

    tz: ZoneInfo
    work_weekdays: frozenset[int] = DEFAULT_WORK_WEEKDAYS
    holidays: frozenset[date] = frozenset()
    identity_weekdays: Mapping[UUID, frozenset[int]] = field(default_factory=dict)
    workday_start: time = DEFAULT_WORKDAY_START
    late_threshold_minutes: int = 15

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        identity_weekdays: Mapping[UUID, frozenset[int]] | None = None,
    ) -> "WorkCalendar":
        return cls(
            tz=settings.tzinfo,
            work_weekdays=settings.work_weekdays,
            holidays=frozenset(settings.holidays_list),
            identity_weekdays=dict(identity_weekdays or {}),
            workday_start=settings.workday_start_time,
            late_threshold_minutes=settings.late_threshold_minutes,
        )

    def with_identity_weekdays(self, identity_weekdays: Mapping[UUID, frozenset[int]]) -> "WorkCalendar":
        """Copy of this calendar with further per-identity overrides."""
        merged = {**self.identity_weekdays, **identity_weekdays}
        return replace(self, identity_weekdays=merged)

    def is_work_day(self, day: date, local_identity_id: UUID | None = None) -> bool:
        """Check whether ``day`` is a work day, for one identity if given."""
        if day in self.holidays:
            return False
        weekdays = self.work_weekdays
        if local_identity_id is not None:
            weekdays = self.identity_weekdays.get(local_identity_id, weekdays)
        return day.weekday() in weekdays

    def is_late(self, check_in: datetime) -> bool:
        """Check whether a check-in falls after the start of day plus the grace period."""
        local = self._localize(check_in)
        cutoff = datetime.combine(local.date(), self.workday_start, tzinfo=self.tz) + timedelta(
            minutes=self.late_threshold_minutes
        )
        return local > cutoff

    def local_date(self, moment: datetime) -> date:
        """Calendar date of an aware timestamp in the calendar zone."""
        return self._localize(moment).date()

    def today(self, now: datetime | None = None) -> date:
        return self.local_date(now or datetime.now(UTC))

    def _localize(self, moment: datetime) -> datetime:
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=UTC)
        return moment.astimezone(self.tz)
