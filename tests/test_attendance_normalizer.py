"""Tests for punch normalization and absence backfill."""

import asyncio
from datetime import date, datetime, time, timedelta
from uuid import uuid4
from zoneinfo import ZoneInfo

import pytest

from attendance_api.exceptions import ConflictError
from attendance_api.models.domain.attendance import (
    AttendanceFlag,
    AttendanceSource,
    AttendanceStatus,
    DailyAttendanceRecord,
)
from attendance_api.models.domain.provider import RawPunchEvent
from attendance_api.models.domain.sync import SyncWindow
from attendance_api.services.attendance_normalizer import backfill, normalize, work_minutes_between
from attendance_api.services.work_calendar import WorkCalendar
from fakes import InMemoryGateway

IST = ZoneInfo("Asia/Kolkata")
CALENDAR = WorkCalendar(tz=IST)
THURSDAY = date(2025, 10, 9)
SUNDAY = date(2025, 10, 12)
LATER = date(2025, 10, 20)


def punch(code: str, day: date, hour: int, minute: int) -> RawPunchEvent:
    return RawPunchEvent(
        employee_code=code,
        timestamp=datetime(day.year, day.month, day.day, hour, minute, tzinfo=IST),
    )


class TestNormalize:
    """Test reduction of punches to daily records."""

    def test_check_in_and_out_on_work_day(self) -> None:
        identity_id = uuid4()
        events = [punch("0001", THURSDAY, 18, 11), punch("0001", THURSDAY, 9, 2)]

        result = normalize(events, {"0001": identity_id}, CALENDAR, LATER)

        assert len(result.records) == 1
        record = result.records[0]
        assert record.check_in_at == datetime(2025, 10, 9, 9, 2, tzinfo=IST)
        assert record.check_out_at == datetime(2025, 10, 9, 18, 11, tzinfo=IST)
        assert record.work_minutes == 549
        assert record.status == AttendanceStatus.PRESENT
        assert record.source == AttendanceSource.PROVIDER
        assert record.punch_count == 2
        assert record.flags == []

    def test_middle_punches_are_ignored_for_pairing(self) -> None:
        identity_id = uuid4()
        events = [punch("0001", THURSDAY, h, 0) for h in (9, 13, 14, 18)]

        record = normalize(events, {"0001": identity_id}, CALENDAR, LATER).records[0]

        assert record.work_minutes == 9 * 60
        assert record.punch_count == 4

    def test_duplicate_punches_are_counted_once(self) -> None:
        """Overlapping fetches deliver the same punch twice."""
        identity_id = uuid4()
        events = [punch("0001", THURSDAY, 9, 2), punch("0001", THURSDAY, 18, 11)]

        first = normalize(events, {"0001": identity_id}, CALENDAR, LATER)
        second = normalize(events + events, {"0001": identity_id}, CALENDAR, LATER)

        assert first.records == second.records
        assert [r.dedup_key for r in second.records] == [(identity_id, THURSDAY, AttendanceSource.PROVIDER)]

    def test_single_punch_on_past_day_flags_missing_checkout(self) -> None:
        identity_id = uuid4()

        record = normalize([punch("0001", THURSDAY, 9, 2)], {"0001": identity_id}, CALENDAR, LATER).records[0]

        assert record.status == AttendanceStatus.PRESENT
        assert record.check_out_at is None
        assert record.work_minutes == 0
        assert record.flags == [AttendanceFlag.MISSING_CHECKOUT]

    def test_single_punch_today_is_in_progress(self) -> None:
        identity_id = uuid4()

        record = normalize([punch("0001", THURSDAY, 9, 2)], {"0001": identity_id}, CALENDAR, THURSDAY).records[0]

        assert record.status == AttendanceStatus.IN_PROGRESS
        assert record.flags == []

    def test_punches_on_non_work_day_are_holiday(self) -> None:
        identity_id = uuid4()
        events = [punch("0001", SUNDAY, 10, 0), punch("0001", SUNDAY, 12, 0)]

        record = normalize(events, {"0001": identity_id}, CALENDAR, LATER).records[0]

        assert record.status == AttendanceStatus.HOLIDAY
        assert record.work_minutes == 120

    def test_unmapped_codes_are_skipped_and_counted(self) -> None:
        identity_id = uuid4()
        events = [punch("0001", THURSDAY, 9, 0), punch("9999", THURSDAY, 9, 5), punch("9999", THURSDAY, 17, 0)]

        result = normalize(events, {"0001": identity_id}, CALENDAR, LATER)

        assert len(result.records) == 1
        assert result.unmapped_events == 2
        assert result.unmapped_codes == {"9999"}

    def test_day_boundary_follows_calendar_zone(self) -> None:
        """A punch at 20:00 UTC is already the next local day in IST."""
        identity_id = uuid4()
        event = RawPunchEvent(
            employee_code="0001",
            timestamp=datetime(2025, 10, 8, 20, 0, tzinfo=ZoneInfo("UTC")),
        )

        record = normalize([event], {"0001": identity_id}, CALENDAR, LATER).records[0]

        assert record.date == THURSDAY

    def test_work_minutes_never_negative(self) -> None:
        start = datetime(2025, 10, 9, 9, 0, tzinfo=IST)

        assert work_minutes_between(start, start - timedelta(minutes=5)) == 0
        assert work_minutes_between(start, None) == 0


class TestLateFlag:
    """Test late check-in detection against 10:30 plus 15 minutes."""

    def test_check_in_after_grace_period_is_late(self) -> None:
        identity_id = uuid4()
        events = [punch("0001", THURSDAY, 10, 46), punch("0001", THURSDAY, 18, 0)]

        record = normalize(events, {"0001": identity_id}, CALENDAR, LATER).records[0]

        assert record.status == AttendanceStatus.PRESENT
        assert record.flags == [AttendanceFlag.LATE]

    def test_check_in_at_end_of_grace_period_is_on_time(self) -> None:
        identity_id = uuid4()
        events = [punch("0001", THURSDAY, 10, 45), punch("0001", THURSDAY, 18, 0)]

        record = normalize(events, {"0001": identity_id}, CALENDAR, LATER).records[0]

        assert record.flags == []

    def test_late_single_punch_keeps_missing_checkout(self) -> None:
        identity_id = uuid4()

        record = normalize([punch("0001", THURSDAY, 11, 0)], {"0001": identity_id}, CALENDAR, LATER).records[0]

        assert record.flags == [AttendanceFlag.LATE, AttendanceFlag.MISSING_CHECKOUT]

    def test_holiday_is_never_late(self) -> None:
        identity_id = uuid4()
        events = [punch("0001", SUNDAY, 12, 0), punch("0001", SUNDAY, 14, 0)]

        record = normalize(events, {"0001": identity_id}, CALENDAR, LATER).records[0]

        assert record.status == AttendanceStatus.HOLIDAY
        assert record.flags == []

    def test_threshold_comes_from_calendar(self) -> None:
        identity_id = uuid4()
        calendar = WorkCalendar(tz=IST, workday_start=time(9, 0), late_threshold_minutes=0)

        record = normalize([punch("0001", THURSDAY, 9, 2)], {"0001": identity_id}, calendar, LATER).records[0]

        assert AttendanceFlag.LATE in record.flags


class TestBackfill:
    """Test materialization of no-show days."""

    def test_non_work_day_is_holiday(self) -> None:
        identity_id = uuid4()
        window = SyncWindow(start=SUNDAY, end=SUNDAY)

        records = backfill(window, [identity_id], set(), CALENDAR, LATER)

        assert len(records) == 1
        assert records[0].status == AttendanceStatus.HOLIDAY

    def test_work_day_without_punches_is_absent(self) -> None:
        identity_id = uuid4()
        window = SyncWindow(start=THURSDAY, end=THURSDAY)

        records = backfill(window, [identity_id], set(), CALENDAR, LATER)

        assert records[0].status == AttendanceStatus.ABSENT
        assert records[0].punch_count == 0

    def test_configured_holiday_is_holiday(self) -> None:
        identity_id = uuid4()
        calendar = WorkCalendar(tz=IST, holidays=frozenset({THURSDAY}))

        records = backfill(SyncWindow(start=THURSDAY, end=THURSDAY), [identity_id], set(), calendar, LATER)

        assert records[0].status == AttendanceStatus.HOLIDAY

    def test_per_identity_work_days(self) -> None:
        part_time = uuid4()
        full_time = uuid4()
        calendar = WorkCalendar(tz=IST, identity_weekdays={part_time: frozenset({0, 1})})

        records = backfill(SyncWindow(start=THURSDAY, end=THURSDAY), [part_time, full_time], set(), calendar, LATER)

        statuses = {r.local_identity_id: r.status for r in records}
        assert statuses[part_time] == AttendanceStatus.HOLIDAY
        assert statuses[full_time] == AttendanceStatus.ABSENT

    def test_covered_days_and_today_are_skipped(self) -> None:
        identity_id = uuid4()
        window = SyncWindow(start=date(2025, 10, 6), end=date(2025, 10, 10))

        records = backfill(window, [identity_id], {(identity_id, date(2025, 10, 7))}, CALENDAR, THURSDAY)

        assert [r.date for r in records] == [date(2025, 10, 6), date(2025, 10, 8)]

    def test_repeating_normalize_and_backfill_is_stable(self) -> None:
        identity_id = uuid4()
        window = SyncWindow(start=THURSDAY, end=SUNDAY)
        events = [punch("0001", THURSDAY, 9, 2), punch("0001", THURSDAY, 18, 11)]
        gateway = InMemoryGateway()

        async def run_once() -> dict:
            result = normalize(events, {"0001": identity_id}, CALENDAR, LATER)
            existing = await gateway.existing_attendance_keys([identity_id], window.start, window.end)
            absences = backfill(window, [identity_id], result.covered_keys | existing, CALENDAR, LATER)
            for record in result.records + absences:
                await gateway.upsert_attendance(record)
            return dict(gateway.attendance)

        first = asyncio.run(run_once())
        second = asyncio.run(run_once())

        assert second == first
        assert len({r.dedup_key for r in second.values()}) == len(second) == 4
        assert second[(identity_id, THURSDAY)].work_minutes == 549


class TestSourcePrecedence:
    """Test that manual records are never overwritten by provider data."""

    def test_provider_record_does_not_replace_manual(self) -> None:
        identity_id = uuid4()
        gateway = InMemoryGateway()
        manual = DailyAttendanceRecord(
            local_identity_id=identity_id,
            date=THURSDAY,
            status=AttendanceStatus.ABSENT,
            source=AttendanceSource.MANUAL,
        )
        asyncio.run(gateway.upsert_attendance(manual))
        provider_record = normalize(
            [punch("0001", THURSDAY, 9, 2), punch("0001", THURSDAY, 18, 11)],
            {"0001": identity_id},
            CALENDAR,
            LATER,
        ).records[0]

        with pytest.raises(ConflictError):
            asyncio.run(gateway.upsert_attendance(provider_record))

        assert gateway.attendance[(identity_id, THURSDAY)].source == AttendanceSource.MANUAL

    def test_provider_record_replaces_provider_record(self) -> None:
        identity_id = uuid4()
        gateway = InMemoryGateway()
        absent = backfill(SyncWindow(start=THURSDAY, end=THURSDAY), [identity_id], set(), CALENDAR, LATER)[0]
        asyncio.run(gateway.upsert_attendance(absent))
        present = normalize([punch("0001", THURSDAY, 9, 2)], {"0001": identity_id}, CALENDAR, LATER).records[0]

        asyncio.run(gateway.upsert_attendance(present))

        assert gateway.attendance[(identity_id, THURSDAY)].status == AttendanceStatus.PRESENT
