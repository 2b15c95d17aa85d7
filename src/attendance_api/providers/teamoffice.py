"""TeamOffice (eTimeOffice) biometric attendance provider."""

import logging
import re
from datetime import datetime
from typing import Any
from zoneinfo import ZoneInfo

import httpx

from attendance_api.config import Settings
from attendance_api.exceptions import (
    AuthError,
    MalformedRecordError,
    RequestRejectedError,
    TransportError,
)
from attendance_api.models.domain.provider import (
    PunchDirection,
    PunchPage,
    ProviderEmployee,
    RawPunchEvent,
    RosterPage,
)
from attendance_api.providers.base import PunchProvider
from attendance_api.utils.teamoffice_codec import (
    basic_auth_header,
    format_range_datetime,
    max_cursor,
    parse_punch_datetime,
)

logger = logging.getLogger(__name__)

# Keys under which the provider wraps row lists, in lookup order
ROW_CONTAINER_KEYS = ("data", "PunchData", "InOutPunchData", "logs", "employees")

_AUTH_MESSAGE_RE = re.compile(
    r"auth|login|credential|password|unauthori[sz]ed|invalid user|corporate id",
    re.IGNORECASE,
)
_EMPTY_MESSAGE_RE = re.compile(r"no (record|data)", re.IGNORECASE)
_EMPTY_TIMES = {"", "--:--", "00:00", "-"}


def _first(row: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = row.get(key)
        if value not in (None, ""):
            return value
    return None


def _truthy(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return bool(value)


def extract_rows(payload: Any) -> list[dict[str, Any]]:
    """Normalize the provider's response envelope into a list of rows."""
    if isinstance(payload, list):
        rows = payload
    elif isinstance(payload, dict):
        rows = []
        for key in ROW_CONTAINER_KEYS:
            if isinstance(payload.get(key), list):
                rows = payload[key]
                break
    else:
        rows = []
    return [row for row in rows if isinstance(row, dict)]


class TeamOfficeProvider(PunchProvider):
    """TeamOffice integration for roster and punch data.

    TeamOffice authenticates every request with a single header holding the
    base64 of ``corp_id:username:password:true``.
    API base: https://api.etimeoffice.com/api
    """

    BASE_URL = "https://api.etimeoffice.com/api"
    RANGE_PATH = "/DownloadPunchData"
    SINCE_PATH = "/DownloadLastPunchData"
    ROSTER_PATH = "/GetEmployeeList"

    def __init__(
        self,
        credentials: dict[str, Any],
        *,
        timezone: ZoneInfo,
        base_url: str | None = None,
        emp_code: str = "ALL",
        roster_path: str | None = None,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize TeamOffice provider.

        Args:
            credentials: Dict with keys:
                - corp_id: TeamOffice corporate ID
                - username: API user name
                - password: API password
                - true_literal: Trailing auth flag (default "true")
            timezone: Zone in which the devices report wall-clock times
            base_url: API base URL
            emp_code: Employee filter; "ALL" for every employee
            roster_path: Path of the employee list endpoint
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        super().__init__(credentials)
        self.corp_id = credentials.get("corp_id", "")
        self.username = credentials.get("username", "")
        self.password = credentials.get("password", "")
        self.true_literal = credentials.get("true_literal") or "true"
        self.timezone = timezone
        self.base_url = (base_url or self.BASE_URL).rstrip("/")
        self.emp_code = emp_code
        self.roster_path = roster_path or self.ROSTER_PATH
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "TeamOfficeProvider":
        return cls(
            {
                "corp_id": settings.provider_corp_id,
                "username": settings.provider_username,
                "password": settings.provider_password,
                "true_literal": settings.provider_true_literal,
            },
            timezone=settings.tzinfo,
            base_url=settings.provider_base_url,
            emp_code=settings.provider_emp_code,
            roster_path=settings.provider_roster_path,
            timeout=settings.provider_timeout_seconds,
            transport=transport,
        )

    def _get_headers(self) -> dict[str, str]:
        """Get API request headers."""
        return {
            "Authorization": basic_auth_header(
                self.corp_id, self.username, self.password, self.true_literal
            ),
            "Accept": "application/json",
        }

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=self._get_headers(),
            timeout=self.timeout,
            transport=self._transport,
        )

    async def _get(self, path: str, params: dict[str, str] | None = None) -> Any:
        """Perform one GET and map failures into the provider error taxonomy.

        Returns:
            Decoded JSON payload

        Raises:
            TransportError: Timeouts, connection failures, 5xx and 429
            AuthError: 401/403 or an authentication message from the provider
            RequestRejectedError: Other 4xx, non-JSON bodies, provider error flags
        """
        try:
            async with self._client() as client:
                response = await client.get(path, params=params)
        except httpx.TimeoutException as e:
            raise TransportError(f"TeamOffice request timed out: {path}") from e
        except httpx.TransportError as e:
            raise TransportError(f"TeamOffice connection failed: {path}") from e

        status = response.status_code
        if status == 429 or status >= 500:
            raise TransportError(f"TeamOffice returned HTTP {status}", status_code=status)
        if status in (401, 403):
            raise AuthError("TeamOffice rejected the credentials", status_code=status)
        if status >= 400:
            raise RequestRejectedError(f"TeamOffice rejected the request: HTTP {status}", status_code=status)

        try:
            payload = response.json()
        except ValueError as e:
            raise RequestRejectedError("TeamOffice returned a non-JSON response", status_code=status) from e

        if isinstance(payload, dict) and _truthy(payload.get("Error")):
            message = str(payload.get("Msg") or "Unknown error")
            if _EMPTY_MESSAGE_RE.search(message):
                return []
            if _AUTH_MESSAGE_RE.search(message):
                raise AuthError(f"TeamOffice authentication failed: {message}")
            raise RequestRejectedError(f"TeamOffice API error: {message}")

        return payload

    async def test_connection(self) -> bool:
        """Test TeamOffice API connection with a one-minute range query.

        Returns:
            True if connection is successful
        """
        now = datetime.now(self.timezone).replace(second=0, microsecond=0)
        try:
            await self._get(
                self.RANGE_PATH,
                {
                    "Empcode": self.emp_code,
                    "FromDate": format_range_datetime(now),
                    "ToDate": format_range_datetime(now),
                },
            )
            return True
        except (TransportError, AuthError, RequestRejectedError) as e:
            logger.warning(f"TeamOffice connection test failed: {e.message}")
            return False

    async def fetch_roster(self) -> RosterPage:
        """Fetch all employees from TeamOffice.

        API: GET /GetEmployeeList
        """
        payload = await self._get(self.roster_path)
        page = RosterPage()
        for row in extract_rows(payload):
            try:
                page.employees.append(self._parse_employee(row))
            except MalformedRecordError as e:
                page.rejected.append(e)
        logger.info(
            f"TeamOffice: fetched {len(page.employees)} employees "
            f"({len(page.rejected)} rejected)"
        )
        return page

    async def fetch_punches_range(self, start: datetime, end: datetime) -> PunchPage:
        """Fetch raw punches for a local datetime range.

        API: GET /DownloadPunchData?Empcode=ALL&FromDate=dd/mm/yyyy_HH:MM&ToDate=...
        """
        payload = await self._get(
            self.RANGE_PATH,
            {
                "Empcode": self.emp_code,
                "FromDate": format_range_datetime(start.astimezone(self.timezone)),
                "ToDate": format_range_datetime(end.astimezone(self.timezone)),
            },
        )
        page = self._parse_punch_rows(extract_rows(payload))
        logger.debug(
            f"TeamOffice: {len(page.events)} punches between "
            f"{format_range_datetime(start)} and {format_range_datetime(end)}"
        )
        return page

    async def fetch_punches_since(self, cursor: str) -> PunchPage:
        """Fetch punches recorded after ``cursor``.

        API: GET /DownloadLastPunchData?Empcode=ALL&LastRecord=MMYYYY$N
        """
        payload = await self._get(
            self.SINCE_PATH,
            {"Empcode": self.emp_code, "LastRecord": cursor},
        )
        rows = extract_rows(payload)
        page = self._parse_punch_rows(rows)
        page.cursor = max_cursor(*(str(row.get("LastRecord") or "") for row in rows))
        return page

    def _parse_punch_rows(self, rows: list[dict[str, Any]]) -> PunchPage:
        page = PunchPage()
        for row in rows:
            try:
                page.events.extend(self._parse_punch(row))
            except MalformedRecordError as e:
                page.rejected.append(e)
        return page

    def _parse_punch(self, row: dict[str, Any]) -> list[RawPunchEvent]:
        """Parse one provider row into punch events.

        Raw rows carry a single ``PunchDateTime``. In/out summary rows carry
        ``DateString`` with ``INTime`` and ``OUTTime`` and yield up to two
        events.
        """
        code = _first(row, "EmpCode", "Empcode", "EmployeeCode")
        if code is None or not str(code).strip():
            raise MalformedRecordError("Punch row has no employee code", row)
        code = str(code).strip()
        device_id = _first(row, "DeviceID", "DeviceId", "MCID")
        device_id = str(device_id) if device_id is not None else None

        punch_time = _first(row, "PunchDateTime", "PunchDate")
        if punch_time is not None:
            try:
                timestamp = parse_punch_datetime(str(punch_time), self.timezone)
            except ValueError as e:
                raise MalformedRecordError(str(e), row) from e
            return [
                RawPunchEvent(
                    employee_code=code,
                    timestamp=timestamp,
                    direction=self._parse_direction(row.get("IO")),
                    device_id=device_id,
                    raw=row,
                )
            ]

        day = _first(row, "DateString")
        if day is None:
            raise MalformedRecordError("Punch row has no timestamp", row)
        events = []
        for key, direction in (("INTime", PunchDirection.IN), ("OUTTime", PunchDirection.OUT)):
            value = str(row.get(key) or "").strip()
            if value in _EMPTY_TIMES:
                continue
            try:
                timestamp = parse_punch_datetime(f"{day} {value}", self.timezone)
            except ValueError as e:
                raise MalformedRecordError(str(e), row) from e
            events.append(
                RawPunchEvent(
                    employee_code=code,
                    timestamp=timestamp,
                    direction=direction,
                    device_id=device_id,
                    raw=row,
                )
            )
        return events

    @staticmethod
    def _parse_direction(value: Any) -> PunchDirection | None:
        text = str(value or "").strip().lower()
        if text in ("in", "i", "checkin", "check-in"):
            return PunchDirection.IN
        if text in ("out", "o", "checkout", "check-out"):
            return PunchDirection.OUT
        return None

    def _parse_employee(self, row: dict[str, Any]) -> ProviderEmployee:
        """Parse a TeamOffice roster row.

        Rows look like ``{"EmpCode": "0042", "Name": "...", "Email": "...",
        "Department": "...", "Designation": "...", "IsActive": true}``.
        """
        code = _first(row, "EmpCode", "Empcode", "EmployeeCode")
        if code is None or not str(code).strip():
            raise MalformedRecordError("Roster row has no employee code", row)

        email = _first(row, "Email", "EmailID", "EmailId")
        department = _first(row, "Department", "DepartmentName")
        designation = _first(row, "Designation")
        active = row.get("IsActive")

        return ProviderEmployee(
            code=str(code).strip(),
            name=str(_first(row, "Name", "EmpName") or "").strip(),
            email=str(email).strip() if email is not None else None,
            department=str(department) if department is not None else None,
            designation=str(designation) if designation is not None else None,
            active=True if active is None else _truthy(active),
            raw=row,
        )
