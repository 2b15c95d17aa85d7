"""Identity mapping ORM model."""

from datetime import datetime
from uuid import UUID

from sqlalchemy import DateTime, Float, ForeignKey, Index, String, UniqueConstraint, text
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from attendance_api.models.orm.base import Base, TimestampMixin, UUIDMixin


class IdentityMappingORM(Base, UUIDMixin, TimestampMixin):
    """Provider employee code to local identity mapping.

    One row per (provider_code, local_identity_id) pair. Rows are never
    deleted; status changes supersede them. The partial unique index keeps
    at most one active mapping per provider code.
    """

    __tablename__ = "identity_mappings"

    provider_code: Mapped[str] = mapped_column(String(64), nullable=False)
    local_identity_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
    )
    match_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    provider_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    provider_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    local_identity: Mapped["LocalIdentityORM"] = relationship("LocalIdentityORM", lazy="select")

    __table_args__ = (
        UniqueConstraint("provider_code", "local_identity_id", name="uq_identity_mappings_code_identity"),
        Index(
            "uq_identity_mappings_active_code",
            "provider_code",
            unique=True,
            postgresql_where=text("status IN ('auto_mapped', 'confirmed')"),
        ),
        Index("idx_identity_mappings_status", "status"),
        Index("idx_identity_mappings_local_identity", "local_identity_id"),
    )


# Import here to avoid circular import
from attendance_api.models.orm.local_identity import LocalIdentityORM  # noqa: E402, F401
