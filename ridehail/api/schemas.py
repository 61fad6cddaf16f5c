"""Pydantic request / response schemas for the REST API.

Money fields are ``Decimal`` and serialise as strings.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from ridehail.domain.enums import (
    AccountStatus,
    LedgerCategory,
    PaymentMethod,
    PaymentStatus,
    ProposalStatus,
    RideStatus,
    RideType,
    Role,
)


# ── Requests ──────────────────────────────────────────────────────────


class RideCreateRequest(BaseModel):
    origin_lat: float = Field(..., ge=-90, le=90)
    origin_lng: float = Field(..., ge=-180, le=180)
    origin_address: str = Field("", max_length=255)
    dest_lat: float = Field(..., ge=-90, le=90)
    dest_lng: float = Field(..., ge=-180, le=180)
    dest_address: str = Field("", max_length=255)
    price_offer: Optional[Decimal] = Field(
        None,
        gt=0,
        max_digits=12,
        decimal_places=2,
        description="Passenger's offer.  Omit to use the fare estimate.",
    )
    distance_km: Optional[float] = Field(
        None,
        ge=0,
        description="Route distance.  Omit to use the great-circle distance.",
    )
    ride_type: RideType = RideType.RIDE
    payment_method: PaymentMethod = PaymentMethod.CASH


class StatusUpdateRequest(BaseModel):
    status: RideStatus
    reason: Optional[str] = Field(None, max_length=500)


class CompleteRideRequest(BaseModel):
    final_price: Optional[Decimal] = Field(
        None,
        gt=0,
        max_digits=12,
        decimal_places=2,
        description="Defaults to the committed price, else the requested price.",
    )
    payment_method: PaymentMethod = PaymentMethod.CASH


class ProposalCreateRequest(BaseModel):
    price: Decimal = Field(..., max_digits=12, decimal_places=2)
    reason: str = Field(..., min_length=1, max_length=500)


class ProposalAnswerRequest(BaseModel):
    accept: bool
    reason: Optional[str] = Field(None, max_length=500)


class PresenceUpdateRequest(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class AdjustmentRequest(BaseModel):
    amount: Decimal = Field(..., max_digits=12, decimal_places=2)
    category: LedgerCategory = LedgerCategory.ADJUSTMENT
    reason: str = Field(..., min_length=1, max_length=500)


# ── Responses ─────────────────────────────────────────────────────────


class RideResponse(BaseModel):
    id: int
    passenger_id: int
    driver_id: Optional[int] = None
    origin_lat: float
    origin_lng: float
    origin_address: Optional[str] = None
    dest_lat: float
    dest_lng: float
    dest_address: Optional[str] = None
    distance_km: float
    ride_type: RideType
    requested_price: Decimal
    committed_price: Optional[Decimal] = None
    final_price: Optional[Decimal] = None
    status: RideStatus
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    cancelled_by: Optional[Role] = None
    cancellation_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    arrived_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class RideRequestedResponse(BaseModel):
    ride: RideResponse
    drivers_notified: int


class ProposalResponse(BaseModel):
    id: int
    ride_id: int
    sequence: int
    proposed_by: Role
    proposer_id: int
    previous_price: Decimal
    proposed_price: Decimal
    reason: str
    status: ProposalStatus
    response_reason: Optional[str] = None
    proposed_at: Optional[datetime] = None
    responded_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class LedgerEntryResponse(BaseModel):
    id: int
    reference_id: str
    account_id: int
    ride_id: Optional[int] = None
    amount: Decimal
    balance_after: Decimal
    category: LedgerCategory
    actor_id: Optional[int] = None
    description: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class SettlementResponse(BaseModel):
    ride: RideResponse
    amount: Decimal
    payment_status: PaymentStatus
    reference_id: Optional[str] = None
    entries: list[LedgerEntryResponse] = []


class AccountResponse(BaseModel):
    id: int
    user_id: int
    balance: Decimal
    daily_limit: Decimal
    daily_limit_used: Decimal
    status: AccountStatus

    model_config = {"from_attributes": True}


class AccountSummaryResponse(BaseModel):
    account: AccountResponse
    entries: list[LedgerEntryResponse] = []


class ReconciliationResponse(BaseModel):
    user_id: int
    balance: Decimal
    ledger_total: Decimal
    entry_count: int
    consistent: bool


class PresenceResponse(BaseModel):
    driver_id: int
    latitude: float
    longitude: float
    online: bool


class HealthResponse(BaseModel):
    status: str = "ok"
    drivers_online: int = 0


class ErrorResponse(BaseModel):
    kind: str
    code: str
    detail: str
    retryable: bool = False
