"""Domain models package."""

from attendance_api.models.domain.attendance import (
    AttendanceFlag,
    AttendanceSource,
    AttendanceStatus,
    DailyAttendanceRecord,
    ensure_write_allowed,
)
from attendance_api.models.domain.identity import (
    ACTIVE_MAPPING_STATUSES,
    MANUAL_MATCH_SCORE,
    IdentityMapping,
    LocalIdentity,
    MappingFilter,
    MappingStatus,
)
from attendance_api.models.domain.provider import (
    ProviderEmployee,
    PunchDirection,
    PunchPage,
    RawPunchEvent,
    RosterPage,
)
from attendance_api.models.domain.sync import (
    OrchestratorStatus,
    SyncMode,
    SyncRun,
    SyncRunStatus,
    SyncRunSummary,
    SyncState,
    SyncType,
    SyncWindow,
    classify_run,
)

__all__ = [
    "ACTIVE_MAPPING_STATUSES",
    "MANUAL_MATCH_SCORE",
    "AttendanceFlag",
    "AttendanceSource",
    "AttendanceStatus",
    "DailyAttendanceRecord",
    "ensure_write_allowed",
    "IdentityMapping",
    "LocalIdentity",
    "MappingFilter",
    "MappingStatus",
    "ProviderEmployee",
    "PunchDirection",
    "PunchPage",
    "RawPunchEvent",
    "RosterPage",
    "OrchestratorStatus",
    "SyncMode",
    "SyncRun",
    "SyncRunStatus",
    "SyncRunSummary",
    "SyncState",
    "SyncType",
    "SyncWindow",
    "classify_run",
]
