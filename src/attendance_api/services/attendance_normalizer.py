"""Reduction of raw punches into daily attendance records.

Punches are grouped per (identity, local calendar day). The earliest punch
of a day is the check-in and the latest, when distinct, the check-out.
Direction flags reported by devices are ignored for pairing; they are
unreliable on shared terminals.
"""

import logging
from collections import defaultdict
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from uuid import UUID

from attendance_api.models.domain.attendance import (
    AttendanceFlag,
    AttendanceSource,
    AttendanceStatus,
    DailyAttendanceRecord,
)
from attendance_api.models.domain.provider import RawPunchEvent
from attendance_api.models.domain.sync import SyncWindow
from attendance_api.services.work_calendar import WorkCalendar

logger = logging.getLogger(__name__)


@dataclass
class NormalizationResult:
    """Records derived from a batch of punches."""

    records: list[DailyAttendanceRecord] = field(default_factory=list)
    unmapped_events: int = 0
    unmapped_codes: set[str] = field(default_factory=set)

    @property
    def covered_keys(self) -> set[tuple[UUID, date]]:
        return {(record.local_identity_id, record.date) for record in self.records}


def work_minutes_between(check_in: datetime | None, check_out: datetime | None) -> int:
    """Whole minutes between two punches, never negative."""
    if check_in is None or check_out is None:
        return 0
    return max(0, int((check_out - check_in).total_seconds() // 60))


def classify_day(
    day: date,
    check_in: datetime | None,
    check_out: datetime | None,
    is_work_day: bool,
    today: date,
    late: bool = False,
) -> tuple[AttendanceStatus, list[AttendanceFlag]]:
    """Status of one identity-day, highest priority rule first.

    ``late`` only adds a flag on work days that have a check-in.
    """
    if not is_work_day:
        return AttendanceStatus.HOLIDAY, []
    if check_in is None:
        return AttendanceStatus.ABSENT, []

    flags = [AttendanceFlag.LATE] if late else []
    if check_out is not None:
        return AttendanceStatus.PRESENT, flags
    if day >= today:
        return AttendanceStatus.IN_PROGRESS, flags
    return AttendanceStatus.PRESENT, flags + [AttendanceFlag.MISSING_CHECKOUT]


def normalize(
    events: Iterable[RawPunchEvent],
    mapping: Mapping[str, UUID],
    calendar: WorkCalendar,
    today: date,
) -> NormalizationResult:
    """Reduce punches to one provider record per identity and day.

    Args:
        events: Raw punches, in any order, possibly overlapping earlier batches
        mapping: Active provider code to identity mapping
        calendar: Work calendar (also defines the local day boundary)
        today: Current local date

    Returns:
        NormalizationResult with records sorted by (day, identity)
    """
    result = NormalizationResult()
    groups: dict[tuple[UUID, date], set[datetime]] = defaultdict(set)

    for event in events:
        local_identity_id = mapping.get(event.employee_code)
        if local_identity_id is None:
            result.unmapped_events += 1
            result.unmapped_codes.add(event.employee_code)
            continue
        day = calendar.local_date(event.timestamp)
        # A set drops the same punch delivered by overlapping fetches
        groups[(local_identity_id, day)].add(event.timestamp)

    for (local_identity_id, day), stamps in sorted(groups.items(), key=lambda item: (item[0][1], str(item[0][0]))):
        ordered = sorted(stamps)
        check_in = ordered[0]
        check_out = ordered[-1] if len(ordered) > 1 else None
        status, flags = classify_day(
            day,
            check_in,
            check_out,
            calendar.is_work_day(day, local_identity_id),
            today,
            late=calendar.is_late(check_in),
        )
        result.records.append(
            DailyAttendanceRecord(
                local_identity_id=local_identity_id,
                date=day,
                check_in_at=check_in,
                check_out_at=check_out,
                work_minutes=work_minutes_between(check_in, check_out),
                status=status,
                source=AttendanceSource.PROVIDER,
                punch_count=len(ordered),
                flags=flags,
            )
        )

    if result.unmapped_events:
        logger.info(
            f"Skipped {result.unmapped_events} punches from {len(result.unmapped_codes)} unmapped employee codes"
        )
    return result


def backfill(
    window: SyncWindow,
    local_identity_ids: Iterable[UUID],
    covered_keys: set[tuple[UUID, date]],
    calendar: WorkCalendar,
    today: date,
) -> list[DailyAttendanceRecord]:
    """Materialize no-show days.

    Every (identity, day) pair in the window without a record becomes
    ``absent`` on work days and ``holiday`` otherwise. Today and later days
    are left alone since they have not elapsed.
    """
    identity_ids = sorted(set(local_identity_ids), key=str)
    records = []
    for day in window.days():
        if day >= today:
            break
        for local_identity_id in identity_ids:
            if (local_identity_id, day) in covered_keys:
                continue
            status = (
                AttendanceStatus.ABSENT
                if calendar.is_work_day(day, local_identity_id)
                else AttendanceStatus.HOLIDAY
            )
            records.append(
                DailyAttendanceRecord(
                    local_identity_id=local_identity_id,
                    date=day,
                    status=status,
                    source=AttendanceSource.PROVIDER,
                )
            )
    return records
