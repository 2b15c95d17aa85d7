"""Persistence gateway used by the sync services.

Services depend on the ``PersistenceGateway`` protocol only. The SQL
implementation opens one short transaction per call so that a failed record
never rolls back the records written before it.
"""

import logging
from collections.abc import Iterable
from datetime import UTC, date, datetime
from typing import Protocol
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from attendance_api.config import parse_weekdays
from attendance_api.exceptions import MappingNotFoundError
from attendance_api.models.domain.attendance import DailyAttendanceRecord
from attendance_api.models.domain.identity import (
    ACTIVE_MAPPING_STATUSES,
    MANUAL_MATCH_SCORE,
    IdentityMapping,
    LocalIdentity,
    MappingFilter,
    MappingStatus,
)
from attendance_api.models.domain.sync import SyncRun, SyncState, SyncType
from attendance_api.models.orm.daily_attendance import DailyAttendanceORM
from attendance_api.models.orm.identity_mapping import IdentityMappingORM
from attendance_api.models.orm.local_identity import LocalIdentityORM
from attendance_api.repositories.attendance_repository import AttendanceRepository
from attendance_api.repositories.identity_repository import IdentityRepository
from attendance_api.repositories.mapping_repository import MappingRepository
from attendance_api.repositories.schema_capabilities import SchemaCapabilities, detect_schema_capabilities
from attendance_api.repositories.sync_run_repository import SyncRunRepository
from attendance_api.repositories.sync_state_repository import SyncStateRepository
from attendance_api.utils.secure_logging import log_warning

logger = logging.getLogger(__name__)


class PersistenceGateway(Protocol):
    """Storage contract for identities, mappings, attendance and sync runs."""

    async def initialize(self) -> None: ...

    async def query_identities(self, active_only: bool = True) -> list[LocalIdentity]: ...

    async def query_mappings(self, mapping_filter: MappingFilter | None = None) -> list[IdentityMapping]: ...

    async def upsert_mapping(self, mapping: IdentityMapping) -> IdentityMapping: ...

    async def set_mapping_status(
        self,
        provider_code: str,
        local_identity_id: UUID,
        status: MappingStatus,
        reviewed_at: datetime | None = None,
    ) -> IdentityMapping: ...

    async def confirm_mapping(
        self,
        provider_code: str,
        local_identity_id: UUID,
        reviewed_at: datetime,
    ) -> IdentityMapping: ...

    async def upsert_attendance(self, record: DailyAttendanceRecord) -> DailyAttendanceRecord: ...

    async def existing_attendance_keys(
        self,
        local_identity_ids: Iterable[UUID],
        start: date,
        end: date,
    ) -> set[tuple[UUID, date]]: ...

    async def create_sync_run(self, run: SyncRun) -> SyncRun: ...

    async def finalize_sync_run(self, run: SyncRun) -> SyncRun: ...

    async def latest_sync_run(self, sync_type: SyncType) -> SyncRun | None: ...

    async def get_sync_state(self, sync_type: SyncType) -> SyncState: ...

    async def set_cursor(self, sync_type: SyncType, cursor: str | None) -> None: ...

    async def claim_sync(self, sync_type: SyncType, run_id: UUID) -> None: ...

    async def release_sync(self, sync_type: SyncType, run_id: UUID) -> None: ...

    async def recover_stale_runs(self) -> list[UUID]: ...

    async def totals(self) -> dict[str, int]: ...


def _to_identity(row: LocalIdentityORM, with_work_days: bool) -> LocalIdentity:
    work_weekdays = None
    if with_work_days and row.work_days:
        try:
            work_weekdays = parse_weekdays(row.work_days)
        except ValueError as e:
            log_warning(logger, f"Ignoring work days of profile {row.id}; using company work days", e)
    return LocalIdentity(
        id=row.id,
        name=row.name,
        email=row.email,
        active=row.is_active,
        work_weekdays=work_weekdays,
    )


class SqlPersistenceGateway:
    """SQLAlchemy implementation of ``PersistenceGateway``."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        capabilities: SchemaCapabilities | None = None,
        engine: AsyncEngine | None = None,
    ) -> None:
        """Initialize gateway.

        Args:
            session_maker: Session factory
            capabilities: Known schema capabilities; detected on initialize() if omitted
            engine: Engine inspected for schema capabilities
        """
        self._session_maker = session_maker
        self._engine = engine
        self._detect_pending = capabilities is None and engine is not None
        self.capabilities = capabilities or SchemaCapabilities()

    async def initialize(self) -> None:
        """Detect optional schema features once."""
        if self._detect_pending:
            self.capabilities = await detect_schema_capabilities(self._engine)
            self._detect_pending = False

    # -------------------------------------------------------------------------
    # Identities and mappings
    # -------------------------------------------------------------------------

    async def query_identities(self, active_only: bool = True) -> list[LocalIdentity]:
        async with self._session_maker() as session:
            supports_work_days = self.capabilities.profile_work_days
            rows = await IdentityRepository(session, supports_work_days=supports_work_days).get_all(
                active_only=active_only
            )
            return [_to_identity(row, supports_work_days) for row in rows]

    async def query_mappings(self, mapping_filter: MappingFilter | None = None) -> list[IdentityMapping]:
        async with self._session_maker() as session:
            rows = await MappingRepository(session).query(mapping_filter)
            return [IdentityMapping.model_validate(row) for row in rows]

    async def upsert_mapping(self, mapping: IdentityMapping) -> IdentityMapping:
        async with self._session_maker() as session:
            async with session.begin():
                row = await MappingRepository(session).upsert(mapping)
                return IdentityMapping.model_validate(row)

    async def set_mapping_status(
        self,
        provider_code: str,
        local_identity_id: UUID,
        status: MappingStatus,
        reviewed_at: datetime | None = None,
    ) -> IdentityMapping:
        """Change the status of an existing mapping.

        Raises:
            MappingNotFoundError: If the pair has no mapping row
        """
        async with self._session_maker() as session:
            async with session.begin():
                row = await MappingRepository(session).get_pair(provider_code, local_identity_id)
                if row is None:
                    raise MappingNotFoundError(provider_code, local_identity_id)
                row.status = status.value
                row.reviewed_at = reviewed_at
                await session.flush()
                await session.refresh(row)
                return IdentityMapping.model_validate(row)

    async def confirm_mapping(
        self,
        provider_code: str,
        local_identity_id: UUID,
        reviewed_at: datetime,
    ) -> IdentityMapping:
        """Confirm a pair and reject every other active mapping of the code.

        Both changes commit together or not at all.
        """
        async with self._session_maker() as session:
            async with session.begin():
                repo = MappingRepository(session)
                pair = None
                for row in await repo.query(MappingFilter(provider_codes=[provider_code]), lock=True):
                    if row.local_identity_id == local_identity_id:
                        pair = row
                    elif MappingStatus(row.status) in ACTIVE_MAPPING_STATUSES:
                        row.status = MappingStatus.REJECTED.value
                        row.reviewed_at = reviewed_at
                # Release the code before the partial unique index sees two active rows
                await session.flush()

                confirmed = await repo.upsert(
                    IdentityMapping(
                        provider_code=provider_code,
                        local_identity_id=local_identity_id,
                        match_score=pair.match_score if pair else MANUAL_MATCH_SCORE,
                        status=MappingStatus.CONFIRMED,
                        provider_name=pair.provider_name if pair else None,
                        provider_email=pair.provider_email if pair else None,
                        reviewed_at=reviewed_at,
                    )
                )
                return IdentityMapping.model_validate(confirmed)

    # -------------------------------------------------------------------------
    # Attendance
    # -------------------------------------------------------------------------

    async def upsert_attendance(self, record: DailyAttendanceRecord) -> DailyAttendanceRecord:
        """Store a record, honouring manual precedence.

        Raises:
            ConflictError: If a manual record occupies the slot
        """
        async with self._session_maker() as session:
            async with session.begin():
                repo = AttendanceRepository(session, supports_flags=self.capabilities.attendance_flags)
                await repo.upsert(record)
        return record

    async def existing_attendance_keys(
        self,
        local_identity_ids: Iterable[UUID],
        start: date,
        end: date,
    ) -> set[tuple[UUID, date]]:
        async with self._session_maker() as session:
            return await AttendanceRepository(session).existing_keys(local_identity_ids, start, end)

    # -------------------------------------------------------------------------
    # Sync runs and state
    # -------------------------------------------------------------------------

    async def create_sync_run(self, run: SyncRun) -> SyncRun:
        async with self._session_maker() as session:
            async with session.begin():
                row = await SyncRunRepository(session).create_from(run)
                return SyncRun.model_validate(row)

    async def finalize_sync_run(self, run: SyncRun) -> SyncRun:
        async with self._session_maker() as session:
            async with session.begin():
                row = await SyncRunRepository(session).finalize(run)
                return SyncRun.model_validate(row) if row else run

    async def latest_sync_run(self, sync_type: SyncType) -> SyncRun | None:
        async with self._session_maker() as session:
            row = await SyncRunRepository(session).get_latest(sync_type.value)
            return SyncRun.model_validate(row) if row else None

    async def get_sync_state(self, sync_type: SyncType) -> SyncState:
        async with self._session_maker() as session:
            row = await SyncStateRepository(session).get(sync_type.value)
            if row is None:
                return SyncState(sync_type=sync_type)
            return SyncState.model_validate(row)

    async def set_cursor(self, sync_type: SyncType, cursor: str | None) -> None:
        async with self._session_maker() as session:
            async with session.begin():
                await SyncStateRepository(session).set_cursor(sync_type.value, cursor)

    async def claim_sync(self, sync_type: SyncType, run_id: UUID) -> None:
        """Set the persisted running flag.

        Raises:
            SyncInProgressError: If another run holds the flag
        """
        async with self._session_maker() as session:
            async with session.begin():
                await SyncStateRepository(session).claim(sync_type.value, run_id)

    async def release_sync(self, sync_type: SyncType, run_id: UUID) -> None:
        async with self._session_maker() as session:
            async with session.begin():
                await SyncStateRepository(session).release(sync_type.value, run_id)

    async def recover_stale_runs(self) -> list[UUID]:
        """Fail runs left in ``running`` by a previous process and clear flags.

        Returns:
            IDs of the recovered runs
        """
        now = datetime.now(UTC)
        async with self._session_maker() as session:
            async with session.begin():
                runs = SyncRunRepository(session)
                stale = await runs.get_running()
                for row in stale:
                    await runs.mark_interrupted(row, now)
                await SyncStateRepository(session).clear_running()
                return [row.id for row in stale]

    async def totals(self) -> dict[str, int]:
        """Headline counts for the status endpoint."""
        async with self._session_maker() as session:
            identities = await IdentityRepository(session).count(LocalIdentityORM.is_active.is_(True))
            active_mappings = await MappingRepository(session).count(
                IdentityMappingORM.status.in_([s.value for s in ACTIVE_MAPPING_STATUSES])
            )
            needs_review = await MappingRepository(session).count(
                IdentityMappingORM.status == MappingStatus.NEEDS_REVIEW.value
            )
            result = await session.execute(select(func.count()).select_from(DailyAttendanceORM))
            return {
                "active_identities": identities,
                "active_mappings": active_mappings,
                "needs_review": needs_review,
                "attendance_records": result.scalar_one(),
            }
