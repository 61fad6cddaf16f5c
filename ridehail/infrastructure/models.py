"""
SQLAlchemy ORM models  (maps to PostgreSQL).

Tables
------
* ``users``                  -- passengers, drivers and administrators
* ``accounts``               -- one wallet per user
* ``rides``                  -- ride requests and their lifecycle
* ``negotiation_proposals``  -- append-only price proposals, owned by a ride
* ``ledger_entries``         -- immutable balance movements

Indexes
-------
* **B-Tree** on ``rides.status`` plus ``passenger_id`` / ``driver_id`` for
  the active-ride checks run under lock on every request and accept.
* Unique ``(ride_id, sequence)`` keeps negotiation history ordered and
  unique ``(reference_id, account_id)`` ties both legs of a settlement to one
  reference.

The one-active-ride-per-actor rule is *not* a constraint: "non-terminal" is
a predicate over ``status`` and is enforced by the engines under lock.
"""

from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)

from .database import Base
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


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum(enum_cls, name: str) -> Enum:
    """Persist enum *values* (lower-case wire names) rather than member names."""
    return Enum(
        enum_cls,
        name=name,
        values_callable=lambda members: [m.value for m in members],
    )


Money = Numeric(12, 2)


class UserModel(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(120), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    role = Column(_enum(Role, "userrole"), default=Role.PASSENGER, nullable=False)
    is_verified = Column(Boolean, default=False, nullable=False)
    is_blocked = Column(Boolean, default=False, nullable=False)
    rating = Column(Float, default=4.5, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class AccountModel(Base):
    __tablename__ = "accounts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    balance = Column(Money, default=0, nullable=False)
    daily_limit = Column(Money, default=500000, nullable=False)
    daily_limit_used = Column(Money, default=0, nullable=False)
    daily_limit_date = Column(Date, nullable=True)
    status = Column(
        _enum(AccountStatus, "accountstatus"),
        default=AccountStatus.ACTIVE,
        nullable=False,
    )
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class RideModel(Base):
    __tablename__ = "rides"

    id = Column(Integer, primary_key=True, autoincrement=True)
    passenger_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    driver_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    origin_lat = Column(Float, nullable=False)
    origin_lng = Column(Float, nullable=False)
    origin_address = Column(String(255), nullable=True)
    dest_lat = Column(Float, nullable=False)
    dest_lng = Column(Float, nullable=False)
    dest_address = Column(String(255), nullable=True)
    distance_km = Column(Float, nullable=False, default=0.0)
    ride_type = Column(_enum(RideType, "ridetype"), default=RideType.RIDE, nullable=False)

    requested_price = Column(Money, nullable=False)
    committed_price = Column(Money, nullable=True)
    final_price = Column(Money, nullable=True)

    status = Column(
        _enum(RideStatus, "ridestatus"), default=RideStatus.SEARCHING, nullable=False
    )
    payment_method = Column(
        _enum(PaymentMethod, "paymentmethod"), default=PaymentMethod.CASH, nullable=False
    )
    payment_status = Column(
        _enum(PaymentStatus, "paymentstatus"), default=PaymentStatus.UNPAID, nullable=False
    )

    cancelled_by = Column(_enum(Role, "userrole"), nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    accepted_at = Column(DateTime(timezone=True), nullable=True)
    arrived_at = Column(DateTime(timezone=True), nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_rides_status", "status"),
        Index("idx_rides_passenger_status", "passenger_id", "status"),
        Index("idx_rides_driver_status", "driver_id", "status"),
        Index("idx_rides_created", "created_at"),
    )


class NegotiationProposalModel(Base):
    __tablename__ = "negotiation_proposals"

    id = Column(Integer, primary_key=True, autoincrement=True)
    ride_id = Column(Integer, ForeignKey("rides.id"), nullable=False)
    sequence = Column(Integer, nullable=False)
    proposed_by = Column(_enum(Role, "userrole"), default=Role.DRIVER, nullable=False)
    proposer_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    previous_price = Column(Money, nullable=False)
    proposed_price = Column(Money, nullable=False)
    reason = Column(Text, nullable=False)
    status = Column(
        _enum(ProposalStatus, "proposalstatus"),
        default=ProposalStatus.PENDING,
        nullable=False,
    )
    response_reason = Column(Text, nullable=True)
    proposed_at = Column(DateTime(timezone=True), default=utcnow)
    responded_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("ride_id", "sequence", name="uq_proposals_ride_sequence"),
        Index("idx_proposals_ride_status", "ride_id", "status"),
    )


class LedgerEntryModel(Base):
    __tablename__ = "ledger_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    reference_id = Column(String(64), nullable=False)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False)
    ride_id = Column(Integer, ForeignKey("rides.id"), nullable=True)
    amount = Column(Money, nullable=False)
    balance_after = Column(Money, nullable=False)
    category = Column(_enum(LedgerCategory, "ledgercategory"), nullable=False)
    actor_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        UniqueConstraint("reference_id", "account_id", name="uq_ledger_reference_account"),
        Index("idx_ledger_account", "account_id"),
        Index("idx_ledger_ride", "ride_id"),
    )
