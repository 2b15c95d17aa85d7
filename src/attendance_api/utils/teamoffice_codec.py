"""Wire formats used by the TeamOffice (eTimeOffice) API.

Range queries take ``dd/mm/yyyy_HH:MM`` datetimes. Incremental queries take a
record pointer of the form ``MMYYYY$N`` where ``N`` is a per-month sequence.
Punch rows report local wall-clock times without an offset.
"""

import base64
import re
from datetime import date, datetime
from typing import NamedTuple
from zoneinfo import ZoneInfo

RANGE_DATETIME_FORMAT = "%d/%m/%Y_%H:%M"

PUNCH_DATETIME_FORMATS = (
    "%d/%m/%Y_%H:%M",
    "%d/%m/%Y_%H:%M:%S",
    "%d/%m/%Y %H:%M:%S",
    "%d/%m/%Y %H:%M",
)

_CURSOR_RE = re.compile(r"^(\d{2})(\d{4})\$(\d+)$")


def basic_auth_header(corp_id: str, username: str, password: str, true_literal: str = "true") -> str:
    """Build the Authorization header value.

    The provider expects the bare base64 of ``corp:user:pass:true`` with no
    scheme prefix.
    """
    raw = ":".join([corp_id, username, password, true_literal])
    return base64.b64encode(raw.encode("utf-8")).decode("ascii")


def format_range_datetime(value: datetime) -> str:
    """Format a datetime for FromDate/ToDate parameters."""
    return value.strftime(RANGE_DATETIME_FORMAT)


def parse_punch_datetime(value: str, tz: ZoneInfo) -> datetime:
    """Parse a punch timestamp and attach the provider time zone.

    Raises:
        ValueError: If the value matches none of the known formats
    """
    text = (value or "").strip()
    for fmt in PUNCH_DATETIME_FORMATS:
        try:
            return datetime.strptime(text, fmt).replace(tzinfo=tz)
        except ValueError:
            continue
    raise ValueError(f"Unrecognized punch timestamp: {value!r}")


class ProviderCursor(NamedTuple):
    """Parsed ``MMYYYY$N`` record pointer."""

    month: int
    year: int
    sequence: int

    @classmethod
    def parse(cls, value: str) -> "ProviderCursor":
        match = _CURSOR_RE.match((value or "").strip())
        if not match:
            raise ValueError(f"Invalid record pointer: {value!r}")
        month, year, sequence = (int(part) for part in match.groups())
        if not 1 <= month <= 12:
            raise ValueError(f"Invalid record pointer month: {value!r}")
        return cls(month=month, year=year, sequence=sequence)

    @property
    def sort_key(self) -> tuple[int, int, int]:
        return (self.year, self.month, self.sequence)

    def format(self) -> str:
        return f"{self.month:02d}{self.year:04d}${self.sequence}"


def seed_cursor(today: date) -> str:
    """Initial pointer for the current month."""
    return ProviderCursor(month=today.month, year=today.year, sequence=0).format()


def is_valid_cursor(value: str | None) -> bool:
    if not value:
        return False
    try:
        ProviderCursor.parse(value)
    except ValueError:
        return False
    return True


def max_cursor(*values: str | None) -> str | None:
    """Return the highest valid pointer, ignoring blanks and garbage."""
    best: ProviderCursor | None = None
    for value in values:
        if not is_valid_cursor(value):
            continue
        parsed = ProviderCursor.parse(value)  # type: ignore[arg-type]
        if best is None or parsed.sort_key > best.sort_key:
            best = parsed
    return best.format() if best else None


def cursor_advanced(before: str | None, after: str | None) -> bool:
    """Check whether ``after`` is strictly beyond ``before``."""
    if not is_valid_cursor(after):
        return False
    if not is_valid_cursor(before):
        return True
    return ProviderCursor.parse(after).sort_key > ProviderCursor.parse(before).sort_key  # type: ignore[arg-type]
