"""Identity mapping DTOs."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from attendance_api.models.domain.identity import MappingStatus


class MappingDecisionRequest(BaseModel):
    """Confirm or reject one (provider code, identity) pair."""

    provider_code: str = Field(min_length=1, max_length=64)
    local_identity_id: UUID


class MappingResponse(BaseModel):
    """Mapping response DTO."""

    provider_code: str
    local_identity_id: UUID
    match_score: float
    status: MappingStatus
    provider_name: str | None = None
    provider_email: str | None = None
    reviewed_at: datetime | None = None
    updated_at: datetime | None = None


class ReviewQueueItem(BaseModel):
    """A mapping awaiting an operator decision, with the proposed identity."""

    mapping: MappingResponse
    identity_name: str | None = None
    identity_email: str | None = None


class ReviewQueueResponse(BaseModel):
    """Review queue response DTO."""

    items: list[ReviewQueueItem]
    total: int
