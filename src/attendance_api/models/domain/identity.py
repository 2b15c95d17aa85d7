"""Identity and mapping domain models."""

from datetime import datetime
from enum import StrEnum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class MappingStatus(StrEnum):
    """Identity mapping status enum."""

    AUTO_MAPPED = "auto_mapped"  # High confidence, assigned by the resolver
    NEEDS_REVIEW = "needs_review"  # Candidate awaiting an operator decision
    REJECTED = "rejected"  # Operator rejected, or superseded by a confirmation
    CONFIRMED = "confirmed"  # Operator confirmed


# Statuses that make a mapping usable for attendance normalization
ACTIVE_MAPPING_STATUSES = frozenset({MappingStatus.AUTO_MAPPED, MappingStatus.CONFIRMED})

# Score recorded when an operator maps a pair the resolver never proposed
MANUAL_MATCH_SCORE = 1.0


class LocalIdentity(BaseModel):
    """User record owned by the product's user directory."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: UUID
    name: str
    email: str
    active: bool = True
    work_weekdays: frozenset[int] | None = None  # Overrides the company work days


class IdentityMapping(BaseModel):
    """Association between a provider employee code and a local identity."""

    model_config = ConfigDict(from_attributes=True)

    provider_code: str
    local_identity_id: UUID
    match_score: float = Field(ge=0.0, le=1.0)
    status: MappingStatus
    provider_name: str | None = None
    provider_email: str | None = None
    reviewed_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_MAPPING_STATUSES


class MappingFilter(BaseModel):
    """Filter for mapping queries. ``None`` fields do not filter."""

    provider_codes: list[str] | None = None
    statuses: list[MappingStatus] | None = None
    local_identity_id: UUID | None = None

    @classmethod
    def active(cls) -> "MappingFilter":
        return cls(statuses=sorted(ACTIVE_MAPPING_STATUSES))
