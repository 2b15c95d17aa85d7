"""Provider domain models."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from attendance_api.exceptions import MalformedRecordError


class PunchDirection(StrEnum):
    """Punch direction as reported by the device, when it reports one."""

    IN = "in"
    OUT = "out"


class ProviderEmployee(BaseModel):
    """Employee as listed on the provider roster."""

    model_config = ConfigDict(frozen=True)

    code: str
    name: str = ""
    email: str | None = None
    department: str | None = None
    designation: str | None = None
    active: bool = True
    raw: dict[str, Any] = Field(default_factory=dict)


class RawPunchEvent(BaseModel):
    """A single biometric punch. Transient, never persisted on its own."""

    model_config = ConfigDict(frozen=True)

    employee_code: str
    timestamp: datetime  # timezone-aware
    direction: PunchDirection | None = None
    device_id: str | None = None
    raw: dict[str, Any] = Field(default_factory=dict)


@dataclass
class RosterPage:
    """Parsed roster response."""

    employees: list[ProviderEmployee] = field(default_factory=list)
    rejected: list[MalformedRecordError] = field(default_factory=list)

    @property
    def records_found(self) -> int:
        return len(self.employees) + len(self.rejected)


@dataclass
class PunchPage:
    """Parsed punch response.

    ``cursor`` is only set for incremental (since-cursor) queries and holds
    the highest record pointer seen in the page.
    """

    events: list[RawPunchEvent] = field(default_factory=list)
    rejected: list[MalformedRecordError] = field(default_factory=list)
    cursor: str | None = None

    @property
    def records_found(self) -> int:
        return len(self.events) + len(self.rejected)
