#!/usr/bin/env python
"""Run a one-off sync against the configured database and provider."""

import asyncio
import logging
import sys
from datetime import date
from pathlib import Path

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from attendance_api.config import get_settings
from attendance_api.database import get_engine, get_session_maker
from attendance_api.exceptions import ConfigurationError
from attendance_api.models.domain.sync import SyncRunSummary, SyncWindow
from attendance_api.providers.teamoffice import TeamOfficeProvider
from attendance_api.repositories.gateway import SqlPersistenceGateway
from attendance_api.services.sync_orchestrator import SyncOrchestrator


async def run_sync(roster: bool, start: date | None, end: date | None) -> bool:
    """Run the requested syncs and print their summaries."""
    settings = get_settings()
    orchestrator = SyncOrchestrator(
        TeamOfficeProvider.from_settings(settings),
        SqlPersistenceGateway(get_session_maker(), engine=get_engine()),
        settings,
        enable_scheduler=False,
    )

    try:
        await orchestrator.start()
    except ConfigurationError as e:
        print(f"Configuration error: {e.message} {e.details}")
        return False

    summaries: list[SyncRunSummary] = []
    try:
        if roster:
            summaries.append(await orchestrator.trigger_roster_sync())
        window = SyncWindow(start=start, end=end) if start and end else None
        summaries.append(await orchestrator.trigger_attendance_sync(window))
    finally:
        await orchestrator.stop()
        await get_engine().dispose()

    ok = True
    for summary in summaries:
        print(summary.model_dump_json(indent=2))
        if not summary.accepted or summary.run is None or summary.run.status == "failed":
            ok = False
    return ok


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Run a one-off attendance sync")
    parser.add_argument("--roster", action="store_true", help="Run a roster sync first")
    parser.add_argument("--from", dest="start", type=date.fromisoformat, help="Full sync start date (YYYY-MM-DD)")
    parser.add_argument("--to", dest="end", type=date.fromisoformat, help="Full sync end date (YYYY-MM-DD)")
    args = parser.parse_args()

    if (args.start is None) != (args.end is None):
        parser.error("--from and --to must be given together")

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
    sys.exit(0 if asyncio.run(run_sync(args.roster, args.start, args.end)) else 1)
