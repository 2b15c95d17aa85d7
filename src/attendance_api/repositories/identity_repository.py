"""Local identity repository (read-only)."""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import undefer

from attendance_api.models.orm.local_identity import LocalIdentityORM
from attendance_api.repositories.base import BaseRepository


class IdentityRepository(BaseRepository[LocalIdentityORM]):
    """Repository for user profiles."""

    model = LocalIdentityORM

    def __init__(self, session: AsyncSession, supports_work_days: bool = True) -> None:
        """Initialize repository.

        Args:
            session: Database session
            supports_work_days: Whether the ``work_days`` column exists
        """
        super().__init__(session)
        self.supports_work_days = supports_work_days

    async def get_all(self, active_only: bool = True) -> list[LocalIdentityORM]:
        """Get identities in insertion order.

        Args:
            active_only: Skip deactivated profiles

        Returns:
            List of identities ordered by creation time
        """
        query = select(LocalIdentityORM)
        if self.supports_work_days:
            query = query.options(undefer(LocalIdentityORM.work_days))
        if active_only:
            query = query.where(LocalIdentityORM.is_active.is_(True))
        query = query.order_by(LocalIdentityORM.created_at, LocalIdentityORM.id)
        result = await self.session.execute(query)
        return list(result.scalars().all())
