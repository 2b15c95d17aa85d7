"""Sync orchestrator: schedules, runs and records roster and attendance syncs.

Each sync type is single-flight. A trigger while a run of the same type is
in flight is answered with ``accepted=False`` instead of queueing. Provider
fetches may run concurrently; every persistence write goes through one
process-wide write lock.

Nothing raised inside a run escapes ``trigger_*``. Failures end up in the
run's status and error list.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, time, timedelta
from typing import Any
from uuid import UUID, uuid4

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from attendance_api.config import Settings
from attendance_api.exceptions import (
    AuthError,
    ConfigurationError,
    ConflictError,
    ProviderError,
    SyncCancelledError,
    SyncInProgressError,
)
from attendance_api.models.domain.attendance import DailyAttendanceRecord
from attendance_api.models.domain.identity import MappingFilter
from attendance_api.models.domain.provider import PunchPage, RawPunchEvent
from attendance_api.models.domain.sync import (
    OrchestratorStatus,
    SyncMode,
    SyncRun,
    SyncRunStatus,
    SyncRunSummary,
    SyncType,
    SyncWindow,
    classify_run,
)
from attendance_api.providers.base import PunchProvider
from attendance_api.repositories.gateway import PersistenceGateway
from attendance_api.services.attendance_normalizer import backfill, normalize
from attendance_api.services.identity_resolver import (
    IdentityResolutionService,
    ResolverConfig,
    resolve,
)
from attendance_api.services.retry import RetryPolicy, Sleeper, call_with_retry
from attendance_api.services.work_calendar import WorkCalendar
from attendance_api.tasks.scheduler import build_scheduler
from attendance_api.utils.secure_logging import log_error, log_warning, sanitize_exception_message
from attendance_api.utils.teamoffice_codec import cursor_advanced, is_valid_cursor, seed_cursor

logger = logging.getLogger(__name__)


@dataclass
class _RunContext:
    """Mutable bookkeeping for one run."""

    run: SyncRun
    errors: list[str] = field(default_factory=list)
    stats: dict[str, Any] = field(default_factory=dict)
    # Attendance runs count stored records plus malformed rows, not punches
    records_found: int = 0
    records_processed: int = 0
    fetch_failed: bool = False
    cancelled: bool = False
    cursor_after: str | None = None

    def bump(self, key: str, amount: int = 1) -> None:
        self.stats[key] = self.stats.get(key, 0) + amount


def _chunk_window(window: SyncWindow, chunk_days: int) -> list[tuple[date, date]]:
    chunks = []
    start = window.start
    while start <= window.end:
        end = min(start + timedelta(days=chunk_days - 1), window.end)
        chunks.append((start, end))
        start = end + timedelta(days=1)
    return chunks


class SyncOrchestrator:
    """Owns scheduling, single-flight state and run bookkeeping."""

    def __init__(
        self,
        provider: PunchProvider,
        gateway: PersistenceGateway,
        settings: Settings,
        *,
        calendar: WorkCalendar | None = None,
        sleeper: Sleeper = asyncio.sleep,
        clock: Callable[[], datetime] | None = None,
        enable_scheduler: bool | None = None,
    ) -> None:
        """Initialize orchestrator.

        Args:
            provider: Attendance provider client
            gateway: Persistence gateway
            settings: Application settings
            calendar: Work calendar; built from settings if omitted
            sleeper: Awaitable used for retry waits
            clock: Returns the current aware datetime
            enable_scheduler: Run interval jobs; defaults to ``settings.sync_enabled``
        """
        self.provider = provider
        self.gateway = gateway
        self.settings = settings
        self.calendar = calendar or WorkCalendar.from_settings(settings)
        self.retry_policy = RetryPolicy.from_settings(settings)
        self.resolver_config = ResolverConfig.from_settings(settings)
        self._sleeper = sleeper
        self._clock = clock or (lambda: datetime.now(UTC))
        self._enable_scheduler = settings.sync_enabled if enable_scheduler is None else enable_scheduler

        self.write_lock = asyncio.Lock()
        self._locks = {sync_type: asyncio.Lock() for sync_type in SyncType}
        self._cancel_requested = {sync_type: False for sync_type in SyncType}
        self._accepting = False
        self._scheduler: AsyncIOScheduler | None = None
        self.identity_service = IdentityResolutionService(gateway, self.write_lock)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    @property
    def accepting(self) -> bool:
        return self._accepting

    def is_running(self, sync_type: SyncType) -> bool:
        return self._locks[sync_type].locked()

    async def start(self) -> None:
        """Validate configuration, prepare storage and start the schedule.

        Raises:
            ConfigurationError: If provider credentials are missing
        """
        missing = self.settings.missing_provider_credentials()
        if missing:
            raise ConfigurationError(
                "Provider credentials are not configured",
                {"missing": missing},
            )

        await self.gateway.initialize()
        recovered = await self.gateway.recover_stale_runs()
        if recovered:
            log_warning(logger, f"Marked {len(recovered)} interrupted sync runs as failed")

        self._accepting = True
        if self._enable_scheduler:
            self._scheduler = build_scheduler(self, self.settings)
            self._scheduler.start()
            logger.info("Sync scheduler started")
        logger.info("Sync orchestrator started")

    async def stop(self) -> None:
        """Refuse new runs, stop the schedule and wait for in-flight runs."""
        self._accepting = False
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("Sync scheduler stopped")
        for lock in self._locks.values():
            async with lock:
                pass
        logger.info("Sync orchestrator stopped")

    def cancel(self, sync_type: SyncType) -> bool:
        """Ask the in-flight run of ``sync_type`` to stop at its next checkpoint.

        Returns:
            False if no run of that type is in flight
        """
        if not self.is_running(sync_type):
            return False
        self._cancel_requested[sync_type] = True
        logger.info(f"Cancellation requested for {sync_type} sync")
        return True

    async def get_status(self) -> OrchestratorStatus:
        """Snapshot of running flags, last runs, the cursor and totals."""
        last_runs: dict[SyncType, SyncRun | None] = {sync_type: None for sync_type in SyncType}
        cursor = None
        totals: dict[str, int] = {}
        try:
            for sync_type in SyncType:
                last_runs[sync_type] = await self.gateway.latest_sync_run(sync_type)
            cursor = (await self.gateway.get_sync_state(SyncType.ATTENDANCE)).cursor
            totals = await self.gateway.totals()
        except Exception as e:
            log_error(logger, "Failed to read sync status", e)

        return OrchestratorStatus(
            accepting=self._accepting,
            running={sync_type: self.is_running(sync_type) for sync_type in SyncType},
            last_runs=last_runs,
            cursor=cursor,
            totals=totals,
        )

    # -------------------------------------------------------------------------
    # Triggers
    # -------------------------------------------------------------------------

    async def trigger_roster_sync(self) -> SyncRunSummary:
        """Run a roster sync now."""
        return await self._execute(SyncType.ROSTER, SyncMode.FULL, None, self._run_roster)

    async def trigger_attendance_sync(self, window: SyncWindow | None = None) -> SyncRunSummary:
        """Run an attendance sync now.

        Args:
            window: Full-mode date window; ``None`` runs an incremental sync
        """
        if window is None:
            return await self._execute(SyncType.ATTENDANCE, SyncMode.INCREMENTAL, None, self._run_incremental)
        return await self._execute(SyncType.ATTENDANCE, SyncMode.FULL, window, self._run_full)

    def _reject(self, sync_type: SyncType, reason: str) -> SyncRunSummary:
        logger.info(f"{sync_type} sync not started: {reason}")
        return SyncRunSummary(accepted=False, sync_type=sync_type, reason=reason)

    async def _execute(
        self,
        sync_type: SyncType,
        mode: SyncMode,
        window: SyncWindow | None,
        body: Callable[[_RunContext], Any],
    ) -> SyncRunSummary:
        if not self._accepting:
            return self._reject(sync_type, "Orchestrator is not accepting new runs")

        lock = self._locks[sync_type]
        if lock.locked():
            return self._reject(sync_type, f"A {sync_type} sync is already running")

        async with lock:
            self._cancel_requested[sync_type] = False
            run = SyncRun(
                id=uuid4(),
                sync_type=sync_type,
                mode=mode,
                window_start=window.start if window else None,
                window_end=window.end if window else None,
                status=SyncRunStatus.RUNNING,
                started_at=self._clock(),
            )

            try:
                await self.gateway.claim_sync(sync_type, run.id)
            except SyncInProgressError as e:
                return self._reject(sync_type, e.message)
            except Exception as e:
                log_error(logger, f"Could not claim {sync_type} sync", e)
                return self._reject(sync_type, "Sync state is unavailable")

            try:
                run = await self.gateway.create_sync_run(run)
            except Exception as e:
                log_error(logger, f"Could not record {sync_type} sync run", e)
                await self._release(sync_type, run.id)
                return self._reject(sync_type, "Sync run could not be recorded")

            logger.info(f"Starting {mode} {sync_type} sync (run {run.id})")
            ctx = _RunContext(run=run)
            try:
                await body(ctx)
            except SyncCancelledError:
                ctx.cancelled = True
            except AuthError as e:
                ctx.fetch_failed = True
                ctx.errors.append(sanitize_exception_message(e.message))
                log_error(logger, f"{sync_type} sync aborted: provider authentication failed", e)
            except ProviderError as e:
                ctx.fetch_failed = True
                ctx.errors.append(sanitize_exception_message(e.message))
                log_error(logger, f"{sync_type} sync aborted", e)
            except Exception as e:
                ctx.fetch_failed = True
                ctx.errors.append(f"Unexpected error: {sanitize_exception_message(e)}")
                log_error(logger, f"{sync_type} sync crashed", e)

            run = await self._finalize(ctx)
            return SyncRunSummary(accepted=True, sync_type=sync_type, run=run)

    async def _finalize(self, ctx: _RunContext) -> SyncRun:
        run = ctx.run
        if ctx.cancelled:
            ctx.errors.append("Run cancelled")
            ctx.stats["cancelled"] = True
            status = SyncRunStatus.DEGRADED if ctx.records_processed > 0 else SyncRunStatus.FAILED
        else:
            status = classify_run(ctx.records_found, len(ctx.errors), ctx.fetch_failed)

        run = run.model_copy(
            update={
                "status": status,
                "records_found": ctx.records_found,
                "records_processed": ctx.records_processed,
                "errors": ctx.errors,
                "stats": ctx.stats,
                "finished_at": self._clock(),
            }
        )

        if (
            ctx.cursor_after
            and status in (SyncRunStatus.SUCCEEDED, SyncRunStatus.DEGRADED)
            and cursor_advanced(run.cursor_before, ctx.cursor_after)
        ):
            try:
                async with self.write_lock:
                    await self.gateway.set_cursor(run.sync_type, ctx.cursor_after)
                run = run.model_copy(update={"cursor_after": ctx.cursor_after})
            except Exception as e:
                log_error(logger, "Failed to persist sync cursor", e)

        try:
            async with self.write_lock:
                run = await self.gateway.finalize_sync_run(run)
        except Exception as e:
            log_error(logger, f"Failed to finalize sync run {run.id}", e)

        await self._release(run.sync_type, run.id)
        self._cancel_requested[run.sync_type] = False

        logger.info(
            f"{run.sync_type} sync finished: {run.status} "
            f"(found={run.records_found}, processed={run.records_processed}, errors={len(run.errors)})"
        )
        return run

    async def _release(self, sync_type: SyncType, run_id: UUID) -> None:
        try:
            await self.gateway.release_sync(sync_type, run_id)
        except Exception as e:
            log_error(logger, f"Failed to clear running flag for {sync_type} sync", e)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _check_cancelled(self, sync_type: SyncType) -> None:
        if self._cancel_requested[sync_type]:
            raise SyncCancelledError(f"{sync_type} sync cancelled")

    async def _fetch(self, sync_type: SyncType, operation: Callable[[], Any], description: str) -> Any:
        return await call_with_retry(
            operation,
            self.retry_policy,
            sleeper=self._sleeper,
            description=description,
            is_cancelled=lambda: self._cancel_requested[sync_type],
        )

    def _today(self) -> date:
        return self.calendar.today(self._clock())

    def _record_rejected(self, ctx: _RunContext, page: PunchPage) -> None:
        for rejected in page.rejected:
            ctx.errors.append(f"Malformed punch record: {rejected.reason}")
        ctx.bump("malformed", len(page.rejected))
        ctx.records_found += len(page.rejected)

    async def _run_calendar(self) -> WorkCalendar:
        """Calendar for one run, with the stored per-identity work days applied."""
        identities = await self.gateway.query_identities(active_only=False)
        overrides = {i.id: i.work_weekdays for i in identities if i.work_weekdays is not None}
        return self.calendar.with_identity_weekdays(overrides)

    async def _active_mapping(self) -> dict[str, UUID]:
        mappings = await self.gateway.query_mappings(MappingFilter.active())
        return {m.provider_code: m.local_identity_id for m in mappings}

    async def _store_records(self, ctx: _RunContext, records: list[DailyAttendanceRecord]) -> None:
        """Upsert records one by one under the write lock."""
        ctx.records_found += len(records)
        async with self.write_lock:
            for record in records:
                try:
                    await self.gateway.upsert_attendance(record)
                except ConflictError:
                    ctx.bump("skipped_manual")
                    logger.info(f"Kept manual attendance record for {record.date.isoformat()}")
                    continue
                except Exception as e:
                    ctx.errors.append(
                        f"Failed to store attendance for {record.date.isoformat()}: "
                        f"{sanitize_exception_message(e)}"
                    )
                    log_warning(logger, "Failed to store attendance record", e)
                    continue
                ctx.records_processed += 1

    async def _fetch_days(self, sync_type: SyncType, days: list[date]) -> list[PunchPage]:
        """Fetch full local days, grouped into chunks, concurrently."""
        chunks: list[tuple[date, date]] = []
        for day in days:
            if chunks and chunks[-1][1] + timedelta(days=1) == day and (
                (day - chunks[-1][0]).days < self.settings.fetch_chunk_days
            ):
                chunks[-1] = (chunks[-1][0], day)
            else:
                chunks.append((day, day))
        return await self._fetch_chunks(sync_type, chunks)

    async def _fetch_chunks(self, sync_type: SyncType, chunks: list[tuple[date, date]]) -> list[PunchPage]:
        semaphore = asyncio.Semaphore(self.settings.fetch_concurrency)
        tz = self.calendar.tz

        async def fetch_chunk(start: date, end: date) -> PunchPage:
            async with semaphore:
                self._check_cancelled(sync_type)
                start_at = datetime.combine(start, time(0, 0), tzinfo=tz)
                end_at = datetime.combine(end, time(23, 59), tzinfo=tz)
                return await self._fetch(
                    sync_type,
                    lambda: self.provider.fetch_punches_range(start_at, end_at),
                    f"punch fetch {start.isoformat()}..{end.isoformat()}",
                )

        results = await asyncio.gather(
            *(fetch_chunk(start, end) for start, end in chunks),
            return_exceptions=True,
        )

        failures = [r for r in results if isinstance(r, BaseException)]
        for failure in failures:
            if not isinstance(failure, SyncCancelledError):
                raise failure
        if failures:
            raise failures[0]
        return list(results)

    # -------------------------------------------------------------------------
    # Run bodies
    # -------------------------------------------------------------------------

    async def _run_roster(self, ctx: _RunContext) -> None:
        page = await self._fetch(SyncType.ROSTER, self.provider.fetch_roster, "roster fetch")
        ctx.records_found = page.records_found
        for rejected in page.rejected:
            ctx.errors.append(f"Malformed roster record: {rejected.reason}")

        mappings = await self.gateway.query_mappings()
        identities = await self.gateway.query_identities(active_only=True)
        report = resolve(page.employees, identities, self.resolver_config, mappings)
        for malformed in report.malformed:
            ctx.errors.append(f"Malformed roster record: {malformed.reason}")

        counts = report.counts()
        counts["malformed"] += len(page.rejected)
        ctx.stats.update(counts)

        self._check_cancelled(SyncType.ROSTER)
        written = await self.identity_service.write_back(report, mappings)
        ctx.errors.extend(written.errors)
        ctx.records_processed = written.processed
        ctx.stats["mappings_written"] = written.written

    async def _run_incremental(self, ctx: _RunContext) -> None:
        sync_type = SyncType.ATTENDANCE
        state = await self.gateway.get_sync_state(sync_type)
        cursor = state.cursor
        if not is_valid_cursor(cursor):
            if cursor:
                log_warning(logger, "Stored attendance cursor is invalid; reseeding")
            cursor = seed_cursor(self._today())
        ctx.run = ctx.run.model_copy(update={"cursor_before": cursor})

        touched_days: set[date] = set()
        current = cursor
        for page_number in range(1, self.settings.incremental_max_pages + 1):
            self._check_cancelled(sync_type)
            page: PunchPage = await self._fetch(
                sync_type,
                lambda c=current: self.provider.fetch_punches_since(c),
                f"incremental punch fetch (page {page_number})",
            )
            ctx.bump("punches_found", page.records_found)
            self._record_rejected(ctx, page)
            for event in page.events:
                touched_days.add(self.calendar.local_date(event.timestamp))

            if page.records_found == 0 or not cursor_advanced(current, page.cursor):
                break
            current = page.cursor
        else:
            logger.info("Incremental sync reached its page limit; remaining punches follow next run")

        if cursor_advanced(cursor, current):
            ctx.cursor_after = current
        ctx.stats["days_touched"] = len(touched_days)
        if not touched_days:
            return

        # Re-read whole days so pairing sees every punch, not only the new ones
        pages = await self._fetch_days(sync_type, sorted(touched_days))
        events: list[RawPunchEvent] = [event for page in pages for event in page.events]
        ctx.bump("malformed_refetch", sum(len(page.rejected) for page in pages))

        calendar = await self._run_calendar()
        result = normalize(events, await self._active_mapping(), calendar, self._today())
        ctx.stats["unmapped"] = result.unmapped_events
        await self._store_records(ctx, result.records)

    async def _run_full(self, ctx: _RunContext) -> None:
        sync_type = SyncType.ATTENDANCE
        window = SyncWindow(start=ctx.run.window_start, end=ctx.run.window_end)
        pages = await self._fetch_chunks(
            sync_type,
            _chunk_window(window, self.settings.fetch_chunk_days),
        )
        for page in pages:
            ctx.bump("punches_found", page.records_found)
            self._record_rejected(ctx, page)
        events = [event for page in pages for event in page.events]

        mapping = await self._active_mapping()
        calendar = await self._run_calendar()
        today = self._today()
        result = normalize(events, mapping, calendar, today)
        ctx.stats["unmapped"] = result.unmapped_events

        identity_ids = set(mapping.values())
        existing = await self.gateway.existing_attendance_keys(identity_ids, window.start, window.end)
        covered = result.covered_keys | existing
        absences = backfill(window, identity_ids, covered, calendar, today)
        ctx.stats["backfilled"] = len(absences)

        self._check_cancelled(sync_type)
        await self._store_records(ctx, result.records + absences)
