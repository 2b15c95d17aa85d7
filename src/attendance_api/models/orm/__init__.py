"""SQLAlchemy ORM models package."""

from attendance_api.models.orm.base import Base
from attendance_api.models.orm.daily_attendance import DailyAttendanceORM
from attendance_api.models.orm.identity_mapping import IdentityMappingORM
from attendance_api.models.orm.local_identity import LocalIdentityORM
from attendance_api.models.orm.sync_run import SyncRunORM
from attendance_api.models.orm.sync_state import SyncStateORM

__all__ = [
    "Base",
    "DailyAttendanceORM",
    "IdentityMappingORM",
    "LocalIdentityORM",
    "SyncRunORM",
    "SyncStateORM",
]
