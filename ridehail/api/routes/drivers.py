"""
Driver presence endpoints
=========================

PUT    /api/v1/drivers/presence -- go online / heartbeat with current position
DELETE /api/v1/drivers/presence -- go offline (kept for the grace window)
"""

from fastapi import APIRouter, Depends, Request

from ridehail.api.dependencies import get_actor, get_services
from ridehail.api.middleware import limiter
from ridehail.api.schemas import PresenceResponse, PresenceUpdateRequest
from ridehail.config import settings
from ridehail.domain.entities import Actor
from ridehail.domain.enums import Role
from ridehail.domain.errors import Forbidden, NotFound
from ridehail.services.container import Services

router = APIRouter(prefix="/drivers", tags=["drivers"])


def _require_driver(actor: Actor) -> None:
    if actor.role is not Role.DRIVER:
        raise Forbidden("Only drivers report presence")


@router.put("/presence", response_model=PresenceResponse, summary="Heartbeat")
@limiter.limit(settings.rate_limit)
async def heartbeat(
    request: Request,
    body: PresenceUpdateRequest,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    _require_driver(actor)
    entry = services.presence.heartbeat(actor.id, body.latitude, body.longitude)
    return PresenceResponse(
        driver_id=entry.driver_id,
        latitude=entry.latitude,
        longitude=entry.longitude,
        online=services.presence.is_online(actor.id),
    )


@router.delete("/presence", response_model=PresenceResponse, summary="Go offline")
@limiter.limit(settings.rate_limit)
async def go_offline(
    request: Request,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    _require_driver(actor)
    services.presence.disconnect(actor.id)
    entry = services.presence.get(actor.id)
    if entry is None:
        raise NotFound("Driver is not connected")
    return PresenceResponse(
        driver_id=entry.driver_id,
        latitude=entry.latitude,
        longitude=entry.longitude,
        online=False,
    )
