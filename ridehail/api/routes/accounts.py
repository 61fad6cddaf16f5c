"""
Wallet endpoints
================

GET /api/v1/accounts/me -- caller's balance, limits and recent ledger entries
"""

from fastapi import APIRouter, Depends, Query, Request

from ridehail.api.dependencies import get_actor, get_services
from ridehail.api.middleware import limiter
from ridehail.api.schemas import (
    AccountResponse,
    AccountSummaryResponse,
    LedgerEntryResponse,
)
from ridehail.config import settings
from ridehail.domain.entities import Actor
from ridehail.services.container import Services

router = APIRouter(prefix="/accounts", tags=["accounts"])


@router.get("/me", response_model=AccountSummaryResponse, summary="Own wallet")
@limiter.limit(settings.rate_limit)
async def my_account(
    request: Request,
    limit: int = Query(20, ge=1, le=100),
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    summary = await services.ledger.account_summary(actor, actor.id, limit=limit)
    return AccountSummaryResponse(
        account=AccountResponse.model_validate(summary.account),
        entries=[LedgerEntryResponse.model_validate(e) for e in summary.entries],
    )
