"""Identity mapping review router."""

from typing import Annotated

from fastapi import APIRouter, Depends

from attendance_api.dependencies import get_mapping_service
from attendance_api.models.dto.mapping import (
    MappingDecisionRequest,
    MappingResponse,
    ReviewQueueResponse,
)
from attendance_api.services.mapping_service import MappingService

router = APIRouter()


@router.get("/review", response_model=ReviewQueueResponse)
async def list_review_queue(
    mapping_service: Annotated[MappingService, Depends(get_mapping_service)],
) -> ReviewQueueResponse:
    """List mappings awaiting an operator decision."""
    return await mapping_service.list_review_queue()


@router.post("/confirm", response_model=MappingResponse)
async def confirm_mapping(
    request: MappingDecisionRequest,
    mapping_service: Annotated[MappingService, Depends(get_mapping_service)],
) -> MappingResponse:
    """Confirm a mapping. Other active mappings of the code are rejected."""
    return await mapping_service.confirm_mapping(request.provider_code, request.local_identity_id)


@router.post("/reject", response_model=MappingResponse)
async def reject_mapping(
    request: MappingDecisionRequest,
    mapping_service: Annotated[MappingService, Depends(get_mapping_service)],
) -> MappingResponse:
    """Reject a mapping."""
    return await mapping_service.reject_mapping(request.provider_code, request.local_identity_id)
