"""Background sync schedule using APScheduler."""

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from attendance_api.config import Settings
from attendance_api.utils.secure_logging import log_error

if TYPE_CHECKING:
    from attendance_api.services.sync_orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)

ATTENDANCE_JOB_ID = "attendance_sync"
ROSTER_JOB_ID = "roster_sync"


async def attendance_sync_job(orchestrator: "SyncOrchestrator") -> None:
    """Background job for the incremental attendance sync."""
    try:
        summary = await orchestrator.trigger_attendance_sync()
        if not summary.accepted:
            logger.info(f"Scheduled attendance sync skipped: {summary.reason}")
    except Exception as e:
        log_error(logger, "Scheduled attendance sync failed", e)


async def roster_sync_job(orchestrator: "SyncOrchestrator") -> None:
    """Background job for the roster sync."""
    try:
        summary = await orchestrator.trigger_roster_sync()
        if not summary.accepted:
            logger.info(f"Scheduled roster sync skipped: {summary.reason}")
    except Exception as e:
        log_error(logger, "Scheduled roster sync failed", e)


def build_scheduler(orchestrator: "SyncOrchestrator", settings: Settings) -> AsyncIOScheduler:
    """Create the scheduler with one interval job per sync type.

    The caller starts and shuts it down.
    """
    scheduler = AsyncIOScheduler(timezone=settings.tzinfo)

    # Roster first so fresh mappings are in place for the first attendance pass
    scheduler.add_job(
        roster_sync_job,
        trigger=IntervalTrigger(hours=settings.roster_sync_interval_hours),
        args=[orchestrator],
        id=ROSTER_JOB_ID,
        name="Sync provider roster",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        next_run_time=datetime.now(settings.tzinfo),
    )

    scheduler.add_job(
        attendance_sync_job,
        trigger=IntervalTrigger(minutes=settings.attendance_sync_interval_minutes),
        args=[orchestrator],
        id=ATTENDANCE_JOB_ID,
        name="Sync attendance punches",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    logger.info(
        f"Scheduled attendance sync every {settings.attendance_sync_interval_minutes} minutes "
        f"and roster sync every {settings.roster_sync_interval_hours} hours"
    )
    return scheduler
