"""Daily attendance repository."""

from collections.abc import Iterable
from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from attendance_api.models.domain.attendance import DailyAttendanceRecord, ensure_write_allowed
from attendance_api.models.orm.daily_attendance import DailyAttendanceORM
from attendance_api.repositories.base import BaseRepository


class AttendanceRepository(BaseRepository[DailyAttendanceORM]):
    """Repository for daily attendance records."""

    model = DailyAttendanceORM

    def __init__(self, session: AsyncSession, supports_flags: bool = True) -> None:
        """Initialize repository.

        Args:
            session: Database session
            supports_flags: Whether the ``flags`` column exists
        """
        super().__init__(session)
        self.supports_flags = supports_flags

    async def get_for_day(self, local_identity_id: UUID, entry_date: date) -> DailyAttendanceORM | None:
        """Get and lock the record for one identity and day."""
        result = await self.session.execute(
            select(DailyAttendanceORM)
            .where(
                DailyAttendanceORM.local_identity_id == local_identity_id,
                DailyAttendanceORM.entry_date == entry_date,
            )
            .with_for_update()
        )
        return result.scalar_one_or_none()

    async def upsert(self, record: DailyAttendanceRecord) -> DailyAttendanceORM:
        """Insert or fully overwrite the record for the identity and day.

        Raises:
            ConflictError: If a manual record occupies the slot
        """
        existing = await self.get_for_day(record.local_identity_id, record.date)
        ensure_write_allowed(existing.source if existing else None, record)

        values = {
            "check_in_at": record.check_in_at,
            "check_out_at": record.check_out_at,
            "work_minutes": record.work_minutes,
            "status": record.status.value,
            "source": record.source.value,
            "punch_count": record.punch_count,
        }
        if self.supports_flags:
            values["flags"] = [flag.value for flag in record.flags]

        if existing:
            for key, value in values.items():
                setattr(existing, key, value)
            await self.session.flush()
            return existing

        instance = DailyAttendanceORM(
            local_identity_id=record.local_identity_id,
            entry_date=record.date,
            **values,
        )
        self.session.add(instance)
        await self.session.flush()
        return instance

    async def existing_keys(
        self,
        local_identity_ids: Iterable[UUID],
        start: date,
        end: date,
    ) -> set[tuple[UUID, date]]:
        """Get (identity, day) pairs that already hold a record in a range."""
        ids = list(local_identity_ids)
        if not ids:
            return set()
        result = await self.session.execute(
            select(DailyAttendanceORM.local_identity_id, DailyAttendanceORM.entry_date).where(
                DailyAttendanceORM.local_identity_id.in_(ids),
                DailyAttendanceORM.entry_date >= start,
                DailyAttendanceORM.entry_date <= end,
            )
        )
        return {(row[0], row[1]) for row in result.all()}
