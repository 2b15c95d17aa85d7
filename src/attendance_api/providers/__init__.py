"""Attendance provider integrations."""

from attendance_api.providers.base import PunchProvider
from attendance_api.providers.teamoffice import TeamOfficeProvider

__all__ = ["PunchProvider", "TeamOfficeProvider"]
