"""Sync control router."""

from typing import Annotated

from fastapi import APIRouter, Depends, status

from attendance_api.dependencies import get_orchestrator
from attendance_api.models.domain.sync import OrchestratorStatus, SyncRunSummary, SyncType
from attendance_api.models.dto.sync import AttendanceSyncRequest, CancelResponse
from attendance_api.services.sync_orchestrator import SyncOrchestrator

router = APIRouter()


@router.get("/status", response_model=OrchestratorStatus)
async def get_sync_status(
    orchestrator: Annotated[SyncOrchestrator, Depends(get_orchestrator)],
) -> OrchestratorStatus:
    """Get running flags, last runs, the attendance cursor and totals."""
    return await orchestrator.get_status()


@router.post("/roster", response_model=SyncRunSummary)
async def trigger_roster_sync(
    orchestrator: Annotated[SyncOrchestrator, Depends(get_orchestrator)],
) -> SyncRunSummary:
    """Run a roster sync and return its summary.

    A run already in flight is reported with ``accepted=false``.
    """
    return await orchestrator.trigger_roster_sync()


@router.post("/attendance", response_model=SyncRunSummary)
async def trigger_attendance_sync(
    request: AttendanceSyncRequest,
    orchestrator: Annotated[SyncOrchestrator, Depends(get_orchestrator)],
) -> SyncRunSummary:
    """Run an incremental or full-window attendance sync."""
    return await orchestrator.trigger_attendance_sync(request.window())


@router.post("/{sync_type}/cancel", response_model=CancelResponse, status_code=status.HTTP_202_ACCEPTED)
async def cancel_sync(
    sync_type: SyncType,
    orchestrator: Annotated[SyncOrchestrator, Depends(get_orchestrator)],
) -> CancelResponse:
    """Request cancellation of the in-flight run of a sync type."""
    return CancelResponse(sync_type=sync_type.value, cancelled=orchestrator.cancel(sync_type))
