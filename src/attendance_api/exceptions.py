"""Domain-specific exceptions for the attendance sync API.

These exceptions keep provider, persistence and orchestration failures
apart so that the orchestrator can decide what to retry, what to skip and
what aborts a run without inspecting error strings.
"""

from datetime import date
from typing import Any


class AttendanceAPIError(Exception):
    """Base exception for all attendance sync errors."""

    def __init__(self, message: str = "An error occurred", details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


# =============================================================================
# Provider Errors
# =============================================================================


class ProviderError(AttendanceAPIError):
    """Base class for failures talking to the attendance provider."""

    retryable: bool = False

    def __init__(
        self,
        message: str = "Provider request failed",
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.status_code = status_code
        details = dict(details or {})
        if status_code is not None:
            details["status_code"] = status_code
        super().__init__(message, details)


class TransportError(ProviderError):
    """Raised on timeouts, connection failures, 5xx and rate limiting."""

    retryable = True


class AuthError(ProviderError):
    """Raised when the provider rejects our credentials."""


class RequestRejectedError(ProviderError):
    """Raised when the provider rejects a request as malformed (4xx)."""


class RetryExhaustedError(ProviderError):
    """Raised when a retryable failure persists past the retry budget."""

    def __init__(self, attempts: int, last_error: ProviderError) -> None:
        super().__init__(
            f"Provider request failed after {attempts} attempts: {last_error.message}",
            status_code=last_error.status_code,
            details={"attempts": attempts},
        )
        self.attempts = attempts
        self.last_error = last_error


# =============================================================================
# Record Errors
# =============================================================================


class MalformedRecordError(AttendanceAPIError):
    """Raised for a single provider record that cannot be interpreted."""

    def __init__(self, reason: str, raw: dict[str, Any] | None = None) -> None:
        super().__init__(reason, {"raw": raw or {}})
        self.reason = reason
        self.raw = raw or {}


class ConflictError(AttendanceAPIError):
    """Raised when a provider write loses to a higher-priority record."""

    def __init__(self, local_identity_id: Any, entry_date: date, existing_source: str) -> None:
        super().__init__(
            "Existing attendance record takes precedence",
            {
                "local_identity_id": str(local_identity_id),
                "date": entry_date.isoformat(),
                "existing_source": existing_source,
            },
        )
        self.existing_source = existing_source


# =============================================================================
# Orchestration Errors
# =============================================================================


class ConfigurationError(AttendanceAPIError):
    """Raised when required configuration is missing or unsafe."""


class SyncInProgressError(AttendanceAPIError):
    """Raised when a sync of the same type is already running."""

    def __init__(self, sync_type: str, running_run_id: Any = None) -> None:
        details: dict[str, Any] = {"sync_type": sync_type}
        if running_run_id is not None:
            details["running_run_id"] = str(running_run_id)
        super().__init__(f"A {sync_type} sync is already running", details)
        self.sync_type = sync_type
        self.running_run_id = running_run_id


class SyncCancelledError(AttendanceAPIError):
    """Raised inside a run when cancellation was requested between batches."""


# =============================================================================
# Resource Errors (404 / 400)
# =============================================================================


class NotFoundError(AttendanceAPIError):
    """Base class for resource not found errors."""

    pass


class MappingNotFoundError(NotFoundError):
    """Raised when an identity mapping cannot be found."""

    def __init__(self, provider_code: str, local_identity_id: Any = None) -> None:
        details: dict[str, Any] = {"provider_code": provider_code}
        if local_identity_id is not None:
            details["local_identity_id"] = str(local_identity_id)
        super().__init__("Mapping not found", details)


class ValidationError(AttendanceAPIError):
    """Base class for validation errors."""

    pass
