"""
Admin / observability endpoints
===============================

POST /api/v1/admin/accounts/{user_id}/adjustments    -- balance override
GET  /api/v1/admin/accounts/{user_id}/reconciliation -- balance vs ledger
GET  /api/v1/admin/health                            -- simple health check
"""

from fastapi import APIRouter, Depends, Request

from ridehail.api.dependencies import get_services, require_admin
from ridehail.api.middleware import limiter
from ridehail.api.schemas import (
    AdjustmentRequest,
    HealthResponse,
    LedgerEntryResponse,
    ReconciliationResponse,
)
from ridehail.config import settings
from ridehail.domain.entities import Actor
from ridehail.services.container import Services

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post(
    "/accounts/{user_id}/adjustments",
    status_code=201,
    response_model=LedgerEntryResponse,
    summary="Credit or debit an account outside settlement",
)
@limiter.limit(settings.rate_limit)
async def adjust_balance(
    request: Request,
    user_id: int,
    body: AdjustmentRequest,
    actor: Actor = Depends(require_admin),
    services: Services = Depends(get_services),
):
    entry = await services.ledger.adjust(
        actor, user_id, body.amount, body.category, body.reason
    )
    return LedgerEntryResponse.model_validate(entry)


@router.get(
    "/accounts/{user_id}/reconciliation",
    response_model=ReconciliationResponse,
    summary="Compare stored balance with the ledger sum",
)
@limiter.limit(settings.rate_limit)
async def reconcile_account(
    request: Request,
    user_id: int,
    actor: Actor = Depends(require_admin),
    services: Services = Depends(get_services),
):
    result = await services.ledger.reconcile(actor, user_id)
    return ReconciliationResponse(
        user_id=result.user_id,
        balance=result.balance,
        ledger_total=result.ledger_total,
        entry_count=result.entry_count,
        consistent=result.consistent,
    )


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health(services: Services = Depends(get_services)):
    return HealthResponse(drivers_online=len(services.presence.online()))
