"""
Ride endpoints
==============

POST  /api/v1/rides                    -- request a ride (201, fans out to drivers)
GET   /api/v1/rides/history            -- caller's rides, newest first
GET   /api/v1/rides/active             -- caller's non-terminal rides
GET   /api/v1/rides/{ride_id}          -- ride details
POST  /api/v1/rides/{ride_id}/accept   -- driver claims a searching ride
PATCH /api/v1/rides/{ride_id}/status   -- arrived / started / cancelled
POST  /api/v1/rides/{ride_id}/complete -- settle and close the ride
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from ridehail.api.dependencies import get_actor, get_services
from ridehail.api.middleware import limiter
from ridehail.api.schemas import (
    CompleteRideRequest,
    ErrorResponse,
    LedgerEntryResponse,
    RideCreateRequest,
    RideRequestedResponse,
    RideResponse,
    SettlementResponse,
    StatusUpdateRequest,
)
from ridehail.config import settings
from ridehail.domain.entities import Actor, Location
from ridehail.services.container import Services

router = APIRouter(prefix="/rides", tags=["rides"])

_CONFLICT = {409: {"model": ErrorResponse}}


@router.post(
    "",
    status_code=201,
    response_model=RideRequestedResponse,
    summary="Request a ride",
    responses={403: {"model": ErrorResponse}, **_CONFLICT},
)
@limiter.limit(settings.rate_limit)
async def request_ride(
    request: Request,
    body: RideCreateRequest,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    outcome = await services.dispatch.request_ride(
        actor,
        origin=Location(body.origin_lat, body.origin_lng, body.origin_address),
        destination=Location(body.dest_lat, body.dest_lng, body.dest_address),
        price_offer=body.price_offer,
        distance_km=body.distance_km,
        ride_type=body.ride_type,
        payment_method=body.payment_method,
    )
    return RideRequestedResponse(
        ride=RideResponse.model_validate(outcome.ride),
        drivers_notified=outcome.drivers_notified,
    )


@router.get("/history", response_model=list[RideResponse], summary="Ride history")
@limiter.limit(settings.rate_limit)
async def ride_history(
    request: Request,
    limit: Optional[int] = Query(None, ge=1, le=200),
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    rides = await services.dispatch.ride_history(actor, limit=limit)
    return [RideResponse.model_validate(r) for r in rides]


@router.get("/active", response_model=list[RideResponse], summary="Active rides")
@limiter.limit(settings.rate_limit)
async def active_rides(
    request: Request,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    rides = await services.dispatch.active_rides(actor)
    return [RideResponse.model_validate(r) for r in rides]


@router.get("/{ride_id}", response_model=RideResponse, summary="Get ride details")
@limiter.limit(settings.rate_limit)
async def get_ride(
    request: Request,
    ride_id: int,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    ride = await services.dispatch.get_ride(actor, ride_id)
    return RideResponse.model_validate(ride)


@router.post(
    "/{ride_id}/accept",
    response_model=RideResponse,
    summary="Accept a searching ride",
    description="Exactly one driver wins; late claims get 409 RIDE_TAKEN.",
    responses=_CONFLICT,
)
@limiter.limit(settings.rate_limit)
async def accept_ride(
    request: Request,
    ride_id: int,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    ride = await services.dispatch.accept_ride(actor, ride_id)
    return RideResponse.model_validate(ride)


@router.patch(
    "/{ride_id}/status",
    response_model=RideResponse,
    summary="Advance or cancel a ride",
    responses=_CONFLICT,
)
@limiter.limit(settings.rate_limit)
async def update_status(
    request: Request,
    ride_id: int,
    body: StatusUpdateRequest,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    ride = await services.dispatch.update_status(actor, ride_id, body.status, body.reason)
    return RideResponse.model_validate(ride)


@router.post(
    "/{ride_id}/complete",
    response_model=SettlementResponse,
    summary="Complete and settle a ride",
    responses={402: {"model": ErrorResponse}, **_CONFLICT},
)
@limiter.limit(settings.rate_limit)
async def complete_ride(
    request: Request,
    ride_id: int,
    body: CompleteRideRequest,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    result = await services.settlement.complete(
        actor, ride_id, final_price=body.final_price, payment_method=body.payment_method
    )
    return SettlementResponse(
        ride=RideResponse.model_validate(result.ride),
        amount=result.amount,
        payment_status=result.payment_status,
        reference_id=result.reference_id,
        entries=[LedgerEntryResponse.model_validate(e) for e in result.entries],
    )
