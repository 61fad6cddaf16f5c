"""
Error taxonomy shared by every engine.

Each error carries a stable machine-readable ``kind`` (the family the caller
reacts to), a more specific ``code`` and the HTTP status the API layer maps
it to.  Only ``Unavailable`` is retryable; everything else is a typed
business failure the caller can act on.
"""

from __future__ import annotations

from typing import Any, Optional


class DomainError(Exception):
    kind = "domain_error"
    code = "DOMAIN_ERROR"
    status_code = 400
    retryable = False

    def __init__(self, message: str, **extra: Any):
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "code": self.code,
            "detail": self.message,
            "retryable": self.retryable,
            **self.extra,
        }


# ── Families ──────────────────────────────────────────────────────────


class InvalidInput(DomainError):
    kind = "validation_error"
    code = "INVALID_INPUT"
    status_code = 422


class Forbidden(DomainError):
    kind = "forbidden"
    code = "FORBIDDEN"
    status_code = 403


class Conflict(DomainError):
    kind = "conflict"
    code = "CONFLICT"
    status_code = 409


class InvalidState(DomainError):
    kind = "invalid_state"
    code = "INVALID_STATE"
    status_code = 409


class InsufficientFunds(DomainError):
    kind = "insufficient_funds"
    code = "INSUFFICIENT_FUNDS"
    status_code = 402


class NotFound(DomainError):
    kind = "not_found"
    code = "NOT_FOUND"
    status_code = 404


class Unavailable(DomainError):
    kind = "unavailable"
    code = "STORAGE_UNAVAILABLE"
    status_code = 503
    retryable = True


# ── Specific failures ─────────────────────────────────────────────────


class InvalidPrice(InvalidInput):
    code = "INVALID_PRICE"


class PriceOutOfBounds(InvalidInput):
    code = "PRICE_OUT_OF_BOUNDS"


class CancelReasonRequired(InvalidInput):
    code = "CANCEL_REASON_REQUIRED"


class RideAlreadyTaken(Conflict):
    code = "RIDE_TAKEN"


class DriverAlreadyBusy(Conflict):
    code = "DRIVER_BUSY"


class ActiveRideExists(Conflict):
    code = "ACTIVE_RIDE_EXISTS"

    def __init__(self, message: str, ride_id: Optional[int] = None):
        super().__init__(message, active_ride_id=ride_id)


class NoPendingProposal(Conflict):
    code = "NO_PENDING_PROPOSAL"


class ProposalAlreadyPending(Conflict):
    code = "PROPOSAL_PENDING"


class InvalidTransition(InvalidState):
    code = "INVALID_TRANSITION"


class InvalidRideState(InvalidState):
    code = "INVALID_RIDE_STATE"


class AccountUnavailable(InvalidState):
    code = "ACCOUNT_UNAVAILABLE"


class DailyLimitExceeded(InsufficientFunds):
    code = "DAILY_LIMIT_EXCEEDED"


class LockTimeout(Unavailable):
    code = "LOCK_TIMEOUT"
