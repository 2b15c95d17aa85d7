"""Operator decisions on identity mappings."""

import asyncio
import logging
from datetime import UTC, datetime
from uuid import UUID

from attendance_api.exceptions import MappingNotFoundError, ValidationError
from attendance_api.models.domain.identity import IdentityMapping, MappingFilter, MappingStatus
from attendance_api.models.dto.mapping import MappingResponse, ReviewQueueItem, ReviewQueueResponse
from attendance_api.repositories.gateway import PersistenceGateway

logger = logging.getLogger(__name__)


def _to_response(mapping: IdentityMapping) -> MappingResponse:
    return MappingResponse(
        provider_code=mapping.provider_code,
        local_identity_id=mapping.local_identity_id,
        match_score=mapping.match_score,
        status=mapping.status,
        provider_name=mapping.provider_name,
        provider_email=mapping.provider_email,
        reviewed_at=mapping.reviewed_at,
        updated_at=mapping.updated_at,
    )


class MappingService:
    """Service for the mapping review queue."""

    def __init__(self, gateway: PersistenceGateway, write_lock: asyncio.Lock | None = None) -> None:
        self.gateway = gateway
        self.write_lock = write_lock or asyncio.Lock()

    async def list_review_queue(self) -> ReviewQueueResponse:
        """Get mappings awaiting review, with the proposed identity."""
        pending = await self.gateway.query_mappings(MappingFilter(statuses=[MappingStatus.NEEDS_REVIEW]))
        identities = {i.id: i for i in await self.gateway.query_identities(active_only=False)}

        items = []
        for mapping in pending:
            identity = identities.get(mapping.local_identity_id)
            items.append(
                ReviewQueueItem(
                    mapping=_to_response(mapping),
                    identity_name=identity.name if identity else None,
                    identity_email=identity.email if identity else None,
                )
            )
        return ReviewQueueResponse(items=items, total=len(items))

    async def confirm_mapping(self, provider_code: str, local_identity_id: UUID) -> MappingResponse:
        """Confirm a pair and supersede every other active mapping of the code.

        Raises:
            ValidationError: If the identity does not exist
        """
        identities = {i.id for i in await self.gateway.query_identities(active_only=False)}
        if local_identity_id not in identities:
            raise ValidationError("Unknown local identity", {"local_identity_id": str(local_identity_id)})

        async with self.write_lock:
            confirmed = await self.gateway.confirm_mapping(provider_code, local_identity_id, datetime.now(UTC))

        logger.info(f"Mapping confirmed for provider code {provider_code}")
        return _to_response(confirmed)

    async def reject_mapping(self, provider_code: str, local_identity_id: UUID) -> MappingResponse:
        """Reject a pair.

        Raises:
            MappingNotFoundError: If the pair has no mapping
        """
        async with self.write_lock:
            existing = await self.gateway.query_mappings(
                MappingFilter(provider_codes=[provider_code], local_identity_id=local_identity_id)
            )
            if not existing:
                raise MappingNotFoundError(provider_code, local_identity_id)
            rejected = await self.gateway.set_mapping_status(
                provider_code,
                local_identity_id,
                MappingStatus.REJECTED,
                reviewed_at=datetime.now(UTC),
            )

        logger.info(f"Mapping rejected for provider code {provider_code}")
        return _to_response(rejected)
