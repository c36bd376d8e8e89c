"""Command center dashboard endpoint."""

from fastapi import APIRouter, Depends

from health_engine.api.deps import get_command_center_service
from health_engine.services.command_center import CommandCenterService

router = APIRouter(prefix="/api/command-center", tags=["command-center"])


@router.get("")
async def get_command_center(
    service: CommandCenterService = Depends(get_command_center_service),
):
    """
    Full platform health payload: North Star, anomalies, diagnosis,
    stability, lifecycle, movers, action items and market pulse.

    Always 200; sections that could not be computed come back empty and are
    named in ``unavailable``.
    """
    return await service.get_data()
