"""Sync run repository."""

from datetime import datetime

from sqlalchemy import select

from attendance_api.models.domain.sync import SyncRun, SyncRunStatus
from attendance_api.models.orm.sync_run import SyncRunORM
from attendance_api.repositories.base import BaseRepository


class SyncRunRepository(BaseRepository[SyncRunORM]):
    """Repository for sync run history."""

    model = SyncRunORM

    async def create_from(self, run: SyncRun) -> SyncRunORM:
        """Persist a new run."""
        return await self.create(
            id=run.id,
            sync_type=run.sync_type.value,
            mode=run.mode.value,
            window_start=run.window_start,
            window_end=run.window_end,
            status=run.status.value,
            records_found=run.records_found,
            records_processed=run.records_processed,
            errors=list(run.errors),
            stats=dict(run.stats),
            cursor_before=run.cursor_before,
            cursor_after=run.cursor_after,
            started_at=run.started_at,
            finished_at=run.finished_at,
        )

    async def finalize(self, run: SyncRun) -> SyncRunORM | None:
        """Write the final counters and status of a run."""
        instance = await self.get_by_id(run.id)
        if instance is None:
            return None
        instance.status = run.status.value
        instance.records_found = run.records_found
        instance.records_processed = run.records_processed
        instance.errors = list(run.errors)
        instance.stats = dict(run.stats)
        instance.cursor_before = run.cursor_before
        instance.cursor_after = run.cursor_after
        instance.finished_at = run.finished_at
        await self.session.flush()
        return instance

    async def get_latest(self, sync_type: str) -> SyncRunORM | None:
        """Get the most recently started run of a type."""
        result = await self.session.execute(
            select(SyncRunORM)
            .where(SyncRunORM.sync_type == sync_type)
            .order_by(SyncRunORM.started_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_running(self) -> list[SyncRunORM]:
        """Get every run still marked as running."""
        result = await self.session.execute(
            select(SyncRunORM).where(SyncRunORM.status == SyncRunStatus.RUNNING.value)
        )
        return list(result.scalars().all())

    async def mark_interrupted(self, instance: SyncRunORM, finished_at: datetime) -> None:
        """Finalize a run orphaned by a crashed process."""
        instance.status = SyncRunStatus.FAILED.value
        instance.errors = [*(instance.errors or []), "interrupted"]
        instance.finished_at = finished_at
        await self.session.flush()
