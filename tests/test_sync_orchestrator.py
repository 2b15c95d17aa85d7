"""Tests for the sync orchestrator."""

import asyncio
from datetime import UTC, date, datetime
from uuid import uuid4
from zoneinfo import ZoneInfo

import pytest

from attendance_api.config import Settings
from attendance_api.exceptions import AuthError, ConfigurationError, MalformedRecordError, TransportError
from attendance_api.models.domain.attendance import AttendanceSource, AttendanceStatus, DailyAttendanceRecord
from attendance_api.models.domain.identity import IdentityMapping, LocalIdentity, MappingStatus
from attendance_api.models.domain.provider import ProviderEmployee, PunchPage, RawPunchEvent, RosterPage
from attendance_api.models.domain.sync import SyncMode, SyncRun, SyncRunStatus, SyncType, SyncWindow
from attendance_api.services.sync_orchestrator import SyncOrchestrator
from fakes import InMemoryGateway, ScriptedProvider

IST = ZoneInfo("Asia/Kolkata")
NOW = datetime(2025, 10, 20, 6, 0, tzinfo=UTC)  # Monday 11:30 IST
JOHN = LocalIdentity(id=uuid4(), name="John Doe", email="john@example.com")


class RecordingSleeper:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class GatedProvider(ScriptedProvider):
    """Blocks the first since-cursor fetch until released."""

    def __init__(self) -> None:
        super().__init__()
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def fetch_punches_since(self, cursor: str) -> PunchPage:
        self.entered.set()
        await self.release.wait()
        return await super().fetch_punches_since(cursor)


def punch(day: date, hour: int, minute: int, code: str = "0001") -> RawPunchEvent:
    return RawPunchEvent(
        employee_code=code,
        timestamp=datetime(day.year, day.month, day.day, hour, minute, tzinfo=IST),
    )


def mapped_gateway() -> InMemoryGateway:
    gateway = InMemoryGateway([JOHN])
    gateway.mappings[("0001", JOHN.id)] = IdentityMapping(
        provider_code="0001",
        local_identity_id=JOHN.id,
        match_score=1.0,
        status=MappingStatus.CONFIRMED,
    )
    return gateway


def make_orchestrator(provider, gateway, sleeper=None, **overrides) -> SyncOrchestrator:
    return SyncOrchestrator(
        provider,
        gateway,
        Settings(**overrides),
        sleeper=sleeper or RecordingSleeper(),
        clock=lambda: NOW,
        enable_scheduler=False,
    )


class TestLifecycle:
    """Test start-up, shutdown and status."""

    def test_start_requires_provider_credentials(self) -> None:
        orchestrator = make_orchestrator(ScriptedProvider(), InMemoryGateway(), provider_password="")

        with pytest.raises(ConfigurationError) as exc_info:
            asyncio.run(orchestrator.start())

        assert "PROVIDER_PASSWORD" in exc_info.value.details["missing"]
        assert not orchestrator.accepting

    def test_triggers_rejected_before_start(self) -> None:
        orchestrator = make_orchestrator(ScriptedProvider(), InMemoryGateway())

        summary = asyncio.run(orchestrator.trigger_roster_sync())

        assert not summary.accepted
        assert summary.run is None

    def test_start_recovers_interrupted_runs(self) -> None:
        gateway = InMemoryGateway()
        stale = SyncRun(
            id=uuid4(),
            sync_type=SyncType.ATTENDANCE,
            mode=SyncMode.INCREMENTAL,
            started_at=datetime(2025, 10, 19, tzinfo=UTC),
        )
        gateway.runs[stale.id] = stale
        asyncio.run(gateway.claim_sync(SyncType.ATTENDANCE, stale.id))
        orchestrator = make_orchestrator(ScriptedProvider(), gateway)

        async def scenario():
            await orchestrator.start()
            summary = await orchestrator.trigger_attendance_sync()
            await orchestrator.stop()
            return summary

        summary = asyncio.run(scenario())

        assert gateway.initialized
        assert gateway.runs[stale.id].status == SyncRunStatus.FAILED
        assert "interrupted" in gateway.runs[stale.id].errors
        assert summary.accepted

    def test_stop_refuses_new_runs(self) -> None:
        orchestrator = make_orchestrator(ScriptedProvider(), InMemoryGateway())

        async def scenario():
            await orchestrator.start()
            await orchestrator.stop()
            return await orchestrator.trigger_attendance_sync()

        assert not asyncio.run(scenario()).accepted

    def test_status_reports_last_run_and_cursor(self) -> None:
        gateway = mapped_gateway()
        provider = ScriptedProvider()
        provider.since = [PunchPage(events=[punch(date(2025, 10, 20), 9, 0)], cursor="102025$1")]
        provider.ranges = [PunchPage(events=[punch(date(2025, 10, 20), 9, 0)])]
        orchestrator = make_orchestrator(provider, gateway)

        async def scenario():
            await orchestrator.start()
            await orchestrator.trigger_attendance_sync()
            return await orchestrator.get_status()

        status = asyncio.run(scenario())

        assert status.accepting
        assert status.running == {SyncType.ROSTER: False, SyncType.ATTENDANCE: False}
        assert status.last_runs[SyncType.ATTENDANCE].status == SyncRunStatus.SUCCEEDED
        assert status.last_runs[SyncType.ROSTER] is None
        assert status.cursor == "102025$1"
        assert status.totals["attendance_records"] == 1


class TestSingleFlight:
    """Test that one sync type never runs twice at once."""

    def test_second_trigger_is_rejected_while_running(self) -> None:
        gateway = mapped_gateway()

        async def scenario():
            provider = GatedProvider()
            orchestrator = make_orchestrator(provider, gateway)
            await orchestrator.start()

            first = asyncio.create_task(orchestrator.trigger_attendance_sync())
            await provider.entered.wait()
            second = await orchestrator.trigger_attendance_sync()
            roster = await orchestrator.trigger_roster_sync()
            provider.release.set()
            return await first, second, roster, provider

        first, second, roster, provider = asyncio.run(scenario())

        assert first.accepted
        assert first.run.status == SyncRunStatus.SUCCEEDED
        assert not second.accepted
        assert "already running" in second.reason
        assert roster.accepted
        assert len(provider.since_calls) == 1
        assert len(gateway.runs) == 2

    def test_persisted_claim_blocks_run(self) -> None:
        gateway = InMemoryGateway()
        orchestrator = make_orchestrator(ScriptedProvider(), gateway)

        async def scenario():
            await orchestrator.start()
            await gateway.claim_sync(SyncType.ATTENDANCE, uuid4())
            return await orchestrator.trigger_attendance_sync()

        summary = asyncio.run(scenario())

        assert not summary.accepted
        assert gateway.runs == {}

    def test_cancel_stops_run_at_next_checkpoint(self) -> None:
        gateway = mapped_gateway()

        async def scenario():
            provider = GatedProvider()
            provider.since = [PunchPage(events=[punch(date(2025, 10, 20), 9, 0)], cursor="102025$1")]
            orchestrator = make_orchestrator(provider, gateway)
            await orchestrator.start()
            assert not orchestrator.cancel(SyncType.ROSTER)

            task = asyncio.create_task(orchestrator.trigger_attendance_sync())
            await provider.entered.wait()
            assert orchestrator.cancel(SyncType.ATTENDANCE)
            provider.release.set()
            return await task

        summary = asyncio.run(scenario())

        assert summary.run.status == SyncRunStatus.FAILED
        assert "Run cancelled" in summary.run.errors
        assert summary.run.stats["cancelled"] is True
        assert gateway.states[SyncType.ATTENDANCE].cursor is None
        assert gateway.states[SyncType.ATTENDANCE].running_run_id is None


class TestAttendanceSync:
    """Test incremental and full attendance runs."""

    def test_incremental_run_stores_records_and_advances_cursor(self) -> None:
        gateway = mapped_gateway()
        provider = ScriptedProvider()
        day = date(2025, 10, 17)
        provider.since = [PunchPage(events=[punch(day, 9, 2), punch(day, 18, 11)], cursor="102025$2")]
        provider.ranges = [PunchPage(events=[punch(day, 9, 2), punch(day, 18, 11)])]
        orchestrator = make_orchestrator(provider, gateway)

        async def scenario():
            await orchestrator.start()
            return await orchestrator.trigger_attendance_sync()

        summary = asyncio.run(scenario())

        run = summary.run
        assert run.status == SyncRunStatus.SUCCEEDED
        assert run.records_found == 1
        assert run.stats["punches_found"] == 2
        assert run.records_processed == 1
        assert run.cursor_before == "102025$0"
        assert run.cursor_after == "102025$2"
        assert provider.since_calls == ["102025$0", "102025$2"]
        assert gateway.states[SyncType.ATTENDANCE].cursor == "102025$2"
        record = gateway.attendance[(JOHN.id, day)]
        assert record.work_minutes == 549
        assert record.status == AttendanceStatus.PRESENT

    def test_transient_failures_are_invisible_in_summary(self) -> None:
        gateway = mapped_gateway()
        provider = ScriptedProvider()
        provider.since = [
            TransportError("HTTP 503", 503),
            TransportError("HTTP 503", 503),
            PunchPage(events=[punch(date(2025, 10, 17), 9, 0)], cursor="102025$1"),
        ]
        sleeper = RecordingSleeper()
        orchestrator = make_orchestrator(provider, gateway, sleeper=sleeper)

        async def scenario():
            await orchestrator.start()
            return await orchestrator.trigger_attendance_sync()

        run = asyncio.run(scenario()).run

        assert run.status == SyncRunStatus.SUCCEEDED
        assert run.errors == []
        assert sleeper.delays == [2.0, 4.0]

    def test_auth_failure_fails_run_and_keeps_cursor(self) -> None:
        gateway = mapped_gateway()
        asyncio.run(gateway.set_cursor(SyncType.ATTENDANCE, "102025$7"))
        provider = ScriptedProvider()
        provider.since = [AuthError("TeamOffice rejected the credentials", 401)]
        sleeper = RecordingSleeper()
        orchestrator = make_orchestrator(provider, gateway, sleeper=sleeper)

        async def scenario():
            await orchestrator.start()
            return await orchestrator.trigger_attendance_sync()

        run = asyncio.run(scenario()).run

        assert run.status == SyncRunStatus.FAILED
        assert len(run.errors) == 1
        assert sleeper.delays == []
        assert gateway.states[SyncType.ATTENDANCE].cursor == "102025$7"
        assert gateway.states[SyncType.ATTENDANCE].running_run_id is None

    def test_invalid_stored_cursor_is_reseeded(self) -> None:
        gateway = mapped_gateway()
        asyncio.run(gateway.set_cursor(SyncType.ATTENDANCE, "garbage"))
        provider = ScriptedProvider()
        orchestrator = make_orchestrator(provider, gateway)

        async def scenario():
            await orchestrator.start()
            return await orchestrator.trigger_attendance_sync()

        run = asyncio.run(scenario()).run

        assert provider.since_calls == ["102025$0"]
        assert run.status == SyncRunStatus.SUCCEEDED
        assert run.records_found == 0

    def test_full_run_backfills_absences_and_holidays(self) -> None:
        gateway = mapped_gateway()
        provider = ScriptedProvider()
        provider.ranges = [PunchPage(events=[punch(date(2025, 10, 9), 9, 2), punch(date(2025, 10, 9), 18, 11)])]
        orchestrator = make_orchestrator(provider, gateway)
        window = SyncWindow(start=date(2025, 10, 9), end=date(2025, 10, 12))

        async def scenario():
            await orchestrator.start()
            return await orchestrator.trigger_attendance_sync(window)

        run = asyncio.run(scenario()).run

        assert run.status == SyncRunStatus.SUCCEEDED
        assert run.mode == SyncMode.FULL
        assert len(provider.range_calls) == 4
        assert run.records_processed == 4
        assert run.stats["backfilled"] == 3
        statuses = {day: gateway.attendance[(JOHN.id, day)].status for day in window.days()}
        assert statuses == {
            date(2025, 10, 9): AttendanceStatus.PRESENT,
            date(2025, 10, 10): AttendanceStatus.ABSENT,
            date(2025, 10, 11): AttendanceStatus.ABSENT,
            date(2025, 10, 12): AttendanceStatus.HOLIDAY,
        }
        assert gateway.states.get(SyncType.ATTENDANCE).cursor is None

    def test_full_run_keeps_manual_records(self) -> None:
        gateway = mapped_gateway()
        day = date(2025, 10, 9)
        manual = DailyAttendanceRecord(
            local_identity_id=JOHN.id,
            date=day,
            status=AttendanceStatus.ABSENT,
            source=AttendanceSource.MANUAL,
        )
        asyncio.run(gateway.upsert_attendance(manual))
        provider = ScriptedProvider()
        provider.ranges = [PunchPage(events=[punch(day, 9, 2), punch(day, 18, 11)])]
        orchestrator = make_orchestrator(provider, gateway)

        async def scenario():
            await orchestrator.start()
            return await orchestrator.trigger_attendance_sync(SyncWindow(start=day, end=day))

        run = asyncio.run(scenario()).run

        assert run.status == SyncRunStatus.SUCCEEDED
        assert run.stats["skipped_manual"] == 1
        assert gateway.attendance[(JOHN.id, day)].source == AttendanceSource.MANUAL

    def test_partial_write_failure_degrades_run(self) -> None:
        gateway = mapped_gateway()
        thursday, friday = date(2025, 10, 9), date(2025, 10, 10)
        gateway.fail_attendance_dates = {friday}
        provider = ScriptedProvider()
        provider.ranges = [
            PunchPage(events=[punch(thursday, 9, 0), punch(thursday, 17, 0)]),
            PunchPage(events=[punch(friday, 9, 0), punch(friday, 17, 0)]),
        ]
        orchestrator = make_orchestrator(provider, gateway)

        async def scenario():
            await orchestrator.start()
            return await orchestrator.trigger_attendance_sync(SyncWindow(start=thursday, end=friday))

        run = asyncio.run(scenario()).run

        assert run.status == SyncRunStatus.DEGRADED
        assert run.records_found == 2
        assert run.stats["punches_found"] == 4
        assert run.records_processed == 1
        assert len(run.errors) == 1
        assert (JOHN.id, thursday) in gateway.attendance

    def test_every_write_failing_fails_run(self) -> None:
        gateway = mapped_gateway()
        day = date(2025, 10, 9)
        gateway.fail_attendance_dates = {day}
        provider = ScriptedProvider()
        provider.ranges = [PunchPage(events=[punch(day, 9, 2), punch(day, 18, 11)])]
        orchestrator = make_orchestrator(provider, gateway)

        async def scenario():
            await orchestrator.start()
            return await orchestrator.trigger_attendance_sync(SyncWindow(start=day, end=day))

        run = asyncio.run(scenario()).run

        assert run.status == SyncRunStatus.FAILED
        assert run.records_found == 1
        assert run.records_processed == 0
        assert len(run.errors) == 1
        assert gateway.attendance == {}

    def test_malformed_rows_count_towards_found(self) -> None:
        gateway = mapped_gateway()
        day = date(2025, 10, 9)
        provider = ScriptedProvider()
        provider.ranges = [
            PunchPage(
                events=[punch(day, 9, 2), punch(day, 18, 11)],
                rejected=[MalformedRecordError("Unparseable punch time", {"PunchDate": "??"})],
            )
        ]
        orchestrator = make_orchestrator(provider, gateway)

        async def scenario():
            await orchestrator.start()
            return await orchestrator.trigger_attendance_sync(SyncWindow(start=day, end=day))

        run = asyncio.run(scenario()).run

        assert run.status == SyncRunStatus.DEGRADED
        assert run.records_found == 2
        assert run.records_processed == 1
        assert run.stats["malformed"] == 1

    def test_full_run_twice_gives_same_records(self) -> None:
        gateway = mapped_gateway()
        provider = ScriptedProvider()
        thursday = date(2025, 10, 9)
        window = SyncWindow(start=thursday, end=date(2025, 10, 12))
        orchestrator = make_orchestrator(provider, gateway)

        async def run_once():
            provider.ranges = [PunchPage(events=[punch(thursday, 9, 2), punch(thursday, 18, 11)])]
            summary = await orchestrator.trigger_attendance_sync(window)
            return summary.run, dict(gateway.attendance)

        async def scenario():
            await orchestrator.start()
            return await run_once(), await run_once()

        (first_run, first), (second_run, second) = asyncio.run(scenario())

        assert first_run.status == SyncRunStatus.SUCCEEDED
        assert second_run.status == SyncRunStatus.SUCCEEDED
        assert second == first
        assert len(second) == 4
        assert second[(JOHN.id, thursday)].work_minutes == 549
        assert second_run.stats["backfilled"] == 0

    def test_stored_work_days_apply_to_backfill(self) -> None:
        part_time = LocalIdentity(
            id=uuid4(),
            name="Priya Nair",
            email="priya@example.com",
            work_weekdays=frozenset({0, 1}),
        )
        gateway = mapped_gateway()
        gateway.identities.append(part_time)
        gateway.mappings[("0002", part_time.id)] = IdentityMapping(
            provider_code="0002",
            local_identity_id=part_time.id,
            match_score=1.0,
            status=MappingStatus.CONFIRMED,
        )
        orchestrator = make_orchestrator(ScriptedProvider(), gateway)
        thursday = date(2025, 10, 9)

        async def scenario():
            await orchestrator.start()
            return await orchestrator.trigger_attendance_sync(SyncWindow(start=thursday, end=thursday))

        run = asyncio.run(scenario()).run

        assert run.status == SyncRunStatus.SUCCEEDED
        assert gateway.attendance[(part_time.id, thursday)].status == AttendanceStatus.HOLIDAY
        assert gateway.attendance[(JOHN.id, thursday)].status == AttendanceStatus.ABSENT

    def test_exhausted_chunk_fails_full_run(self) -> None:
        gateway = mapped_gateway()
        provider = ScriptedProvider()
        provider.ranges = [TransportError("HTTP 503", 503) for _ in range(4)]
        orchestrator = make_orchestrator(provider, gateway)
        day = date(2025, 10, 9)

        async def scenario():
            await orchestrator.start()
            return await orchestrator.trigger_attendance_sync(SyncWindow(start=day, end=day))

        run = asyncio.run(scenario()).run

        assert run.status == SyncRunStatus.FAILED
        assert "after 4 attempts" in run.errors[0]
        assert gateway.attendance == {}


class TestRosterSync:
    """Test roster runs."""

    def test_roster_run_writes_mappings(self) -> None:
        sakshi = LocalIdentity(id=uuid4(), name="Sakshi Saglotia", email="sakshi@example.com")
        gateway = InMemoryGateway([JOHN, sakshi])
        provider = ScriptedProvider()
        provider.roster = [
            RosterPage(
                employees=[
                    ProviderEmployee(code="0001", name="John Doe", email="john@example.com"),
                    ProviderEmployee(code="0002", name="Sakshi", email="sakshi@example.com"),
                ]
            )
        ]
        orchestrator = make_orchestrator(provider, gateway)

        async def scenario():
            await orchestrator.start()
            return await orchestrator.trigger_roster_sync()

        run = asyncio.run(scenario()).run

        assert run.status == SyncRunStatus.SUCCEEDED
        assert run.records_found == 2
        assert run.records_processed == 2
        assert run.stats["auto_mapped"] == 1
        assert run.stats["needs_review"] == 1
        assert gateway.mappings[("0001", JOHN.id)].status == MappingStatus.AUTO_MAPPED
        assert gateway.mappings[("0002", sakshi.id)].status == MappingStatus.NEEDS_REVIEW
