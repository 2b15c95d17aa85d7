"""FastAPI dependencies."""

from fastapi import Request

from attendance_api.exceptions import ConfigurationError
from attendance_api.services.mapping_service import MappingService
from attendance_api.services.sync_orchestrator import SyncOrchestrator


def get_orchestrator(request: Request) -> SyncOrchestrator:
    """Get the orchestrator built in the application lifespan."""
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise ConfigurationError("Sync orchestrator is not running")
    return orchestrator


def get_mapping_service(request: Request) -> MappingService:
    """Get a MappingService sharing the orchestrator's write lock."""
    orchestrator = get_orchestrator(request)
    return MappingService(orchestrator.gateway, orchestrator.write_lock)
