"""Sync state repository."""

from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from attendance_api.exceptions import SyncInProgressError
from attendance_api.models.orm.sync_state import SyncStateORM


class SyncStateRepository:
    """Repository for per sync type cursors and single-flight flags."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session."""
        self.session = session

    async def get(self, sync_type: str, lock: bool = False) -> SyncStateORM | None:
        """Get the state row for a sync type.

        Args:
            sync_type: Sync type key
            lock: Take a row lock for the rest of the transaction

        Returns:
            SyncStateORM or None if the type has never run
        """
        query = select(SyncStateORM).where(SyncStateORM.sync_type == sync_type)
        if lock:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def get_or_create(self, sync_type: str) -> SyncStateORM:
        """Get and lock the state row, creating it on first use."""
        state = await self.get(sync_type, lock=True)
        if state:
            return state
        state = SyncStateORM(sync_type=sync_type)
        self.session.add(state)
        await self.session.flush()
        return state

    async def set_cursor(self, sync_type: str, cursor: str | None) -> SyncStateORM:
        state = await self.get_or_create(sync_type)
        state.cursor = cursor
        await self.session.flush()
        return state

    async def claim(self, sync_type: str, run_id: UUID) -> SyncStateORM:
        """Mark a sync type as running.

        Raises:
            SyncInProgressError: If another run already holds the flag
        """
        state = await self.get_or_create(sync_type)
        if state.running_run_id is not None and state.running_run_id != run_id:
            raise SyncInProgressError(sync_type, state.running_run_id)
        state.running_run_id = run_id
        await self.session.flush()
        return state

    async def release(self, sync_type: str, run_id: UUID) -> SyncStateORM:
        """Clear the running flag held by ``run_id`` and record it as last run."""
        state = await self.get_or_create(sync_type)
        if state.running_run_id == run_id:
            state.running_run_id = None
        state.last_run_id = run_id
        await self.session.flush()
        return state

    async def clear_running(self) -> None:
        """Clear every running flag."""
        await self.session.execute(
            update(SyncStateORM)
            .where(SyncStateORM.running_run_id.is_not(None))
            .values(running_run_id=None)
        )
