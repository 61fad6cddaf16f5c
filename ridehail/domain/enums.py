"""Domain enumerations and state-transition rules."""

import enum


class Role(str, enum.Enum):
    PASSENGER = "passenger"
    DRIVER = "driver"
    ADMIN = "admin"


class RideStatus(str, enum.Enum):
    SEARCHING = "searching"
    ACCEPTED = "accepted"
    ARRIVED = "arrived"
    STARTED = "started"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# State machine: maps current status -> set of valid next statuses
RIDE_TRANSITIONS: dict[RideStatus, set[RideStatus]] = {
    RideStatus.SEARCHING: {RideStatus.ACCEPTED, RideStatus.CANCELLED},
    RideStatus.ACCEPTED: {RideStatus.ARRIVED, RideStatus.CANCELLED},
    RideStatus.ARRIVED: {RideStatus.STARTED},
    RideStatus.STARTED: {RideStatus.COMPLETED, RideStatus.CANCELLED},
    RideStatus.COMPLETED: set(),
    RideStatus.CANCELLED: set(),
}

TERMINAL_STATUSES = frozenset({RideStatus.COMPLETED, RideStatus.CANCELLED})
ACTIVE_PASSENGER_STATUSES = frozenset(
    {
        RideStatus.SEARCHING,
        RideStatus.ACCEPTED,
        RideStatus.ARRIVED,
        RideStatus.STARTED,
    }
)
ACTIVE_DRIVER_STATUSES = frozenset(
    {RideStatus.ACCEPTED, RideStatus.ARRIVED, RideStatus.STARTED}
)
NEGOTIABLE_STATUSES = frozenset({RideStatus.ACCEPTED, RideStatus.STARTED})


class RideType(str, enum.Enum):
    RIDE = "ride"
    MOTO = "moto"
    DELIVERY = "delivery"


class ProposalStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class PaymentMethod(str, enum.Enum):
    CASH = "cash"
    WALLET = "wallet"


# Methods whose settlement moves money through the ledger
LEDGER_BACKED_METHODS = frozenset({PaymentMethod.WALLET})


class PaymentStatus(str, enum.Enum):
    UNPAID = "unpaid"
    PAID = "paid"
    AWAITING_COLLECTION = "awaiting_collection"


class AccountStatus(str, enum.Enum):
    ACTIVE = "active"
    FROZEN = "frozen"
    SUSPENDED = "suspended"


class LedgerCategory(str, enum.Enum):
    RIDE_SETTLEMENT = "ride_settlement"
    ADJUSTMENT = "adjustment"
    REFUND = "refund"
