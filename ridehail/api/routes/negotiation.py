"""
Negotiation endpoints
=====================

POST /api/v1/rides/{ride_id}/negotiation/proposals -- driver proposes a price
POST /api/v1/rides/{ride_id}/negotiation/response  -- passenger answers
GET  /api/v1/rides/{ride_id}/negotiation           -- proposal history
"""

from fastapi import APIRouter, Depends, Request

from ridehail.api.dependencies import get_actor, get_services
from ridehail.api.middleware import limiter
from ridehail.api.schemas import (
    ErrorResponse,
    ProposalAnswerRequest,
    ProposalCreateRequest,
    ProposalResponse,
)
from ridehail.config import settings
from ridehail.domain.entities import Actor
from ridehail.services.container import Services

router = APIRouter(prefix="/rides/{ride_id}/negotiation", tags=["negotiation"])


@router.post(
    "/proposals",
    status_code=201,
    response_model=ProposalResponse,
    summary="Propose a new price",
    responses={409: {"model": ErrorResponse}},
)
@limiter.limit(settings.rate_limit)
async def propose_price(
    request: Request,
    ride_id: int,
    body: ProposalCreateRequest,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    proposal = await services.negotiation.propose(actor, ride_id, body.price, body.reason)
    return ProposalResponse.model_validate(proposal)


@router.post(
    "/response",
    response_model=ProposalResponse,
    summary="Accept or reject the pending proposal",
    responses={409: {"model": ErrorResponse}},
)
@limiter.limit(settings.rate_limit)
async def respond_to_proposal(
    request: Request,
    ride_id: int,
    body: ProposalAnswerRequest,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    proposal = await services.negotiation.respond(actor, ride_id, body.accept, body.reason)
    return ProposalResponse.model_validate(proposal)


@router.get("", response_model=list[ProposalResponse], summary="Negotiation history")
@limiter.limit(settings.rate_limit)
async def negotiation_history(
    request: Request,
    ride_id: int,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    proposals = await services.negotiation.history(actor, ride_id)
    return [ProposalResponse.model_validate(p) for p in proposals]
