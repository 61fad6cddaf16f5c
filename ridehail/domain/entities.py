"""
Domain value objects and operation results.

The ORM rows in ``infrastructure.models`` are the ride / proposal / account
entities themselves; this module only holds the small immutable values the
engines pass around and the result objects they hand back to the API layer.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Optional

from .enums import PaymentStatus, Role


# ── Value Objects ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class Location:
    latitude: float
    longitude: float
    address: str = ""


@dataclass(frozen=True)
class Actor:
    """Verified caller identity supplied by the authentication layer."""

    id: int
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN


# ── Results ───────────────────────────────────────────────────────────


@dataclass
class DispatchOutcome:
    ride: Any
    drivers_notified: int = 0


@dataclass
class SettlementResult:
    ride: Any
    amount: Decimal
    payment_status: PaymentStatus
    reference_id: Optional[str] = None
    entries: list[Any] = field(default_factory=list)


@dataclass
class Reconciliation:
    user_id: int
    balance: Decimal
    ledger_total: Decimal
    entry_count: int

    @property
    def consistent(self) -> bool:
        return self.balance == self.ledger_total


@dataclass
class AccountSummary:
    account: Any
    entries: list[Any] = field(default_factory=list)
