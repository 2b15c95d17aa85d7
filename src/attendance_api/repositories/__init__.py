"""Database repositories."""

from attendance_api.repositories.attendance_repository import AttendanceRepository
from attendance_api.repositories.gateway import PersistenceGateway, SqlPersistenceGateway
from attendance_api.repositories.identity_repository import IdentityRepository
from attendance_api.repositories.mapping_repository import MappingRepository
from attendance_api.repositories.schema_capabilities import SchemaCapabilities, detect_schema_capabilities
from attendance_api.repositories.sync_run_repository import SyncRunRepository
from attendance_api.repositories.sync_state_repository import SyncStateRepository

__all__ = [
    "AttendanceRepository",
    "IdentityRepository",
    "MappingRepository",
    "PersistenceGateway",
    "SchemaCapabilities",
    "SqlPersistenceGateway",
    "SyncRunRepository",
    "SyncStateRepository",
    "detect_schema_capabilities",
]
