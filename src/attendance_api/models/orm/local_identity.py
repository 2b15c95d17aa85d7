"""Local identity ORM model.

The ``profiles`` table belongs to the product's user directory. This service
only reads it.
"""

from sqlalchemy import Boolean, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from attendance_api.models.orm.base import Base, TimestampMixin, UUIDMixin


class LocalIdentityORM(Base, UUIDMixin, TimestampMixin):
    """User profile database model."""

    __tablename__ = "profiles"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    # Comma-separated weekday tokens; NULL follows the company work days
    work_days: Mapped[str | None] = mapped_column(String(64), nullable=True, deferred=True)

    __table_args__ = (
        Index("idx_profiles_is_active", "is_active"),
        Index("idx_profiles_email", "email"),
    )
