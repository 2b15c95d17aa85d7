"""Sync run domain models."""

from datetime import date, datetime
from enum import StrEnum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator


class SyncType(StrEnum):
    """Sync type enum."""

    ROSTER = "roster"
    ATTENDANCE = "attendance"


class SyncMode(StrEnum):
    """Sync mode enum."""

    FULL = "full"
    INCREMENTAL = "incremental"


class SyncRunStatus(StrEnum):
    """Sync run status enum."""

    RUNNING = "running"
    SUCCEEDED = "succeeded"
    DEGRADED = "degraded"
    FAILED = "failed"


class SyncWindow(BaseModel):
    """Inclusive date window for full attendance syncs."""

    model_config = ConfigDict(frozen=True)

    start: date
    end: date

    @model_validator(mode="after")
    def validate_order(self) -> "SyncWindow":
        if self.end < self.start:
            raise ValueError("Window end must not be before window start")
        return self

    def days(self) -> list[date]:
        """All dates in the window, ascending."""
        return [date.fromordinal(o) for o in range(self.start.toordinal(), self.end.toordinal() + 1)]


class SyncRun(BaseModel):
    """Record of a single sync execution."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    sync_type: SyncType
    mode: SyncMode
    window_start: date | None = None
    window_end: date | None = None
    status: SyncRunStatus = SyncRunStatus.RUNNING
    records_found: int = 0
    records_processed: int = 0
    errors: list[str] = Field(default_factory=list)
    stats: dict[str, Any] = Field(default_factory=dict)
    cursor_before: str | None = None
    cursor_after: str | None = None
    started_at: datetime
    finished_at: datetime | None = None


class SyncRunSummary(BaseModel):
    """Structured outcome returned by every orchestrator trigger."""

    accepted: bool
    sync_type: SyncType
    run: SyncRun | None = None
    reason: str | None = None


class SyncState(BaseModel):
    """Persisted per-type cursor and single-flight flag."""

    model_config = ConfigDict(from_attributes=True)

    sync_type: SyncType
    cursor: str | None = None
    running_run_id: UUID | None = None
    last_run_id: UUID | None = None
    updated_at: datetime | None = None


def classify_run(
    records_found: int,
    error_count: int,
    fetch_failed: bool = False,
) -> SyncRunStatus:
    """Derive the final status of a run from its counters.

    A run fails when its primary fetch failed or when every record failed.
    Any error short of that degrades the run.
    """
    if fetch_failed:
        return SyncRunStatus.FAILED
    if error_count == 0:
        return SyncRunStatus.SUCCEEDED
    if records_found > 0 and error_count < records_found:
        return SyncRunStatus.DEGRADED
    return SyncRunStatus.FAILED


class OrchestratorStatus(BaseModel):
    """Snapshot of the orchestrator for operators."""

    accepting: bool
    running: dict[SyncType, bool]
    last_runs: dict[SyncType, SyncRun | None]
    cursor: str | None = None
    totals: dict[str, int] = Field(default_factory=dict)
