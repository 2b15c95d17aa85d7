"""Application configuration."""

from datetime import date, time
from functools import lru_cache
from typing import Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, PostgresDsn, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Weekday tokens accepted in WORK_DAYS (Monday == 0)
WEEKDAY_TOKENS = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")


def parse_weekdays(value: str) -> frozenset[int]:
    """Parse comma-separated weekday tokens into weekday numbers.

    Raises:
        ValueError: If a token is not a known weekday
    """
    tokens = [item.strip().lower()[:3] for item in value.split(",") if item.strip()]
    unknown = [token for token in tokens if token not in WEEKDAY_TOKENS]
    if unknown:
        raise ValueError(f"unknown weekday tokens: {unknown}")
    return frozenset(WEEKDAY_TOKENS.index(token) for token in tokens)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "Attendance Sync API"
    debug: bool = False
    environment: Literal["development", "staging", "production"] = "development"

    # Database (required - no default for security)
    database_url: PostgresDsn = Field(
        description="PostgreSQL connection URL. Must be set via environment variable."
    )
    database_pool_size: int = 5
    database_max_overflow: int = 10

    # Provider (TeamOffice / eTimeOffice)
    provider_base_url: str = "https://api.etimeoffice.com/api"
    provider_corp_id: str = ""
    provider_username: str = ""
    provider_password: str = ""
    provider_true_literal: str = "true"
    provider_emp_code: str = "ALL"
    provider_roster_path: str = "/GetEmployeeList"
    provider_timeout_seconds: float = 60.0

    # Calendar
    timezone: str = "Asia/Kolkata"
    work_days: str = "mon,tue,wed,thu,fri,sat"  # Comma-separated weekday tokens
    holidays: str = ""  # Comma-separated ISO dates
    workday_start: str = "10:30"  # Local HH:MM
    late_threshold_minutes: int = Field(default=15, ge=0)

    # Scheduling
    sync_enabled: bool = False
    attendance_sync_interval_minutes: int = Field(default=3, ge=1)
    roster_sync_interval_hours: int = Field(default=24, ge=1)

    # Retry policy
    max_retries: int = Field(default=3, ge=0)
    retry_delay_seconds: float = Field(default=2.0, ge=0)
    retry_backoff: Literal["fixed", "exponential"] = "exponential"
    retry_max_delay_seconds: float = Field(default=60.0, ge=0)

    # Fetching
    fetch_chunk_days: int = Field(default=1, ge=1)
    fetch_concurrency: int = Field(default=4, ge=1)
    incremental_max_pages: int = Field(default=20, ge=1)

    # Identity matching
    min_match_score: float = 0.3  # Show candidates above 30%
    auto_map_threshold: float = 0.8  # Auto-map above 80%

    @model_validator(mode="after")
    def validate_settings(self) -> "Settings":
        """Validate settings for consistency."""
        if self.environment == "production" and self.debug:
            raise ValueError("DEBUG mode cannot be enabled in production environment.")

        url = str(self.database_url)
        if not url.startswith(("postgresql://", "postgres://")):
            raise ValueError(
                "DATABASE_URL must be a PostgreSQL URL starting with 'postgresql://' or 'postgres://'"
            )

        for name in ("min_match_score", "auto_map_threshold"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name.upper()} must be between 0 and 1")
        if self.min_match_score > self.auto_map_threshold:
            raise ValueError("MIN_MATCH_SCORE cannot exceed AUTO_MAP_THRESHOLD")

        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown TIMEZONE: {self.timezone}")

        try:
            parse_weekdays(self.work_days)
        except ValueError as e:
            raise ValueError(f"WORK_DAYS contains {e}") from e

        try:
            _ = self.workday_start_time
        except ValueError:
            raise ValueError(f"WORKDAY_START must be a local time as HH:MM, got {self.workday_start!r}")

        # Parse eagerly so a bad date fails at start-up rather than mid-sync
        _ = self.holidays_list

        return self

    @staticmethod
    def _split(value: str) -> list[str]:
        return [item.strip() for item in value.split(",") if item.strip()]

    @property
    def async_database_url(self) -> str:
        """Get async database URL for SQLAlchemy with asyncpg."""
        url = str(self.database_url)
        url = url.replace("postgres://", "postgresql://", 1)
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        url = url.replace("sslmode=", "ssl=")
        return url

    @property
    def tzinfo(self) -> ZoneInfo:
        """Get the configured attendance time zone."""
        return ZoneInfo(self.timezone)

    @property
    def work_weekdays(self) -> frozenset[int]:
        """Get configured work days as weekday numbers (Monday == 0)."""
        return parse_weekdays(self.work_days)

    @property
    def workday_start_time(self) -> time:
        """Get the local start of the work day."""
        hours, _, minutes = self.workday_start.strip().partition(":")
        if len(hours) != 2 or len(minutes) != 2:
            raise ValueError(f"Invalid HH:MM value: {self.workday_start}")
        return time(int(hours), int(minutes))

    @property
    def holidays_list(self) -> list[date]:
        """Get configured company holidays."""
        try:
            return [date.fromisoformat(d) for d in self._split(self.holidays)]
        except ValueError as e:
            raise ValueError(f"HOLIDAYS must be comma-separated ISO dates: {e}") from e

    def missing_provider_credentials(self) -> list[str]:
        """List provider credential settings that are not configured."""
        required = {
            "PROVIDER_CORP_ID": self.provider_corp_id,
            "PROVIDER_USERNAME": self.provider_username,
            "PROVIDER_PASSWORD": self.provider_password,
            "PROVIDER_BASE_URL": self.provider_base_url,
        }
        return [name for name, value in required.items() if not value]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
