"""Base provider interface."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from attendance_api.models.domain.provider import PunchPage, RosterPage


class PunchProvider(ABC):
    """Abstract base class for biometric attendance providers.

    Implementations raise the ``ProviderError`` family from
    ``attendance_api.exceptions`` and never retry on their own. Retrying is
    the orchestrator's job.
    """

    def __init__(self, credentials: dict[str, Any]) -> None:
        """Initialize provider with credentials.

        Args:
            credentials: Provider-specific credentials
        """
        self.credentials = credentials

    @abstractmethod
    async def test_connection(self) -> bool:
        """Test the provider connection.

        Returns:
            True if connection is successful
        """
        pass

    @abstractmethod
    async def fetch_roster(self) -> RosterPage:
        """Fetch the full employee roster."""
        pass

    @abstractmethod
    async def fetch_punches_range(self, start: datetime, end: datetime) -> PunchPage:
        """Fetch all punches between two local datetimes (inclusive)."""
        pass

    @abstractmethod
    async def fetch_punches_since(self, cursor: str) -> PunchPage:
        """Fetch punches recorded after a record pointer.

        The returned page carries the highest pointer seen, or ``None`` if
        the page held no pointers.
        """
        pass
