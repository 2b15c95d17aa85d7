"""Detection of optional schema features."""

import logging
from dataclasses import dataclass

from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import AsyncEngine

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SchemaCapabilities:
    """Optional columns present in the connected database.

    Detected once at start-up so repositories never inspect the schema per call.
    """

    attendance_flags: bool = True
    profile_work_days: bool = True


async def detect_schema_capabilities(engine: AsyncEngine) -> SchemaCapabilities:
    """Inspect the live schema.

    Args:
        engine: Async engine to inspect

    Returns:
        Detected capabilities
    """

    def _columns(sync_conn) -> dict[str, set[str]]:
        inspector = inspect(sync_conn)
        columns = {}
        for table in ("daily_attendance", "profiles"):
            if inspector.has_table(table):
                columns[table] = {column["name"] for column in inspector.get_columns(table)}
            else:
                columns[table] = set()
        return columns

    async with engine.connect() as conn:
        columns = await conn.run_sync(_columns)

    capabilities = SchemaCapabilities(
        attendance_flags="flags" in columns["daily_attendance"],
        profile_work_days="work_days" in columns["profiles"],
    )
    if not capabilities.attendance_flags:
        logger.warning("daily_attendance.flags column missing; record flags will not be stored")
    if not capabilities.profile_work_days:
        logger.warning("profiles.work_days column missing; per-identity work days are not applied")
    return capabilities
