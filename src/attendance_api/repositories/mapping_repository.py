"""Identity mapping repository."""

from uuid import UUID

from sqlalchemy import select

from attendance_api.models.domain.identity import IdentityMapping, MappingFilter
from attendance_api.models.orm.identity_mapping import IdentityMappingORM
from attendance_api.repositories.base import BaseRepository


class MappingRepository(BaseRepository[IdentityMappingORM]):
    """Repository for provider code to identity mappings."""

    model = IdentityMappingORM

    async def get_pair(self, provider_code: str, local_identity_id: UUID) -> IdentityMappingORM | None:
        """Get the mapping row for one (code, identity) pair."""
        result = await self.session.execute(
            select(IdentityMappingORM)
            .where(
                IdentityMappingORM.provider_code == provider_code,
                IdentityMappingORM.local_identity_id == local_identity_id,
            )
            .with_for_update()
        )
        return result.scalar_one_or_none()

    async def query(
        self,
        mapping_filter: MappingFilter | None = None,
        lock: bool = False,
    ) -> list[IdentityMappingORM]:
        """Get mappings matching a filter, oldest first.

        Args:
            mapping_filter: Optional filter
            lock: Lock the returned rows until the transaction ends
        """
        query = select(IdentityMappingORM)
        if mapping_filter is not None:
            if mapping_filter.provider_codes is not None:
                query = query.where(IdentityMappingORM.provider_code.in_(mapping_filter.provider_codes))
            if mapping_filter.statuses is not None:
                query = query.where(
                    IdentityMappingORM.status.in_([s.value for s in mapping_filter.statuses])
                )
            if mapping_filter.local_identity_id is not None:
                query = query.where(IdentityMappingORM.local_identity_id == mapping_filter.local_identity_id)
        query = query.order_by(IdentityMappingORM.created_at, IdentityMappingORM.provider_code)
        if lock:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def upsert(self, mapping: IdentityMapping) -> IdentityMappingORM:
        """Insert or update the row for the mapping's (code, identity) pair.

        Args:
            mapping: Mapping to store

        Returns:
            Created or updated IdentityMappingORM
        """
        existing = await self.get_pair(mapping.provider_code, mapping.local_identity_id)
        values = {
            "match_score": mapping.match_score,
            "status": mapping.status.value,
            "provider_name": mapping.provider_name,
            "provider_email": mapping.provider_email,
            "reviewed_at": mapping.reviewed_at,
        }

        if existing:
            for key, value in values.items():
                setattr(existing, key, value)
            await self.session.flush()
            await self.session.refresh(existing)
            return existing

        instance = IdentityMappingORM(
            provider_code=mapping.provider_code,
            local_identity_id=mapping.local_identity_id,
            **values,
        )
        self.session.add(instance)
        await self.session.flush()
        await self.session.refresh(instance)
        return instance
