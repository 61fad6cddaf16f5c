"""Initial schema: users, accounts, rides, negotiation proposals, ledger.

Revision ID: 001
Create Date: 2026-10-16
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "001"
down_revision = None
branch_labels = None
depends_on = None


ENUMS = {
    "userrole": ("passenger", "driver", "admin"),
    "accountstatus": ("active", "frozen", "suspended"),
    "ridestatus": ("searching", "accepted", "arrived", "started", "completed", "cancelled"),
    "ridetype": ("ride", "moto", "delivery"),
    "paymentmethod": ("cash", "wallet"),
    "paymentstatus": ("unpaid", "paid", "awaiting_collection"),
    "proposalstatus": ("pending", "accepted", "rejected"),
    "ledgercategory": ("ride_settlement", "adjustment", "refund"),
}


def _enum(name: str) -> postgresql.ENUM:
    # types are created once up front; several columns share ``userrole``
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def upgrade() -> None:
    bind = op.get_bind()
    for name, values in ENUMS.items():
        postgresql.ENUM(*values, name=name).create(bind, checkfirst=True)

    # ── users ─────────────────────────────────────────────────────────
    op.create_table(
        "users",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("email", sa.String(255), unique=True, nullable=False),
        sa.Column("role", _enum("userrole"), nullable=False, server_default="passenger"),
        sa.Column("is_verified", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("is_blocked", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("rating", sa.Float, nullable=False, server_default="4.5"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )

    # ── accounts ──────────────────────────────────────────────────────
    op.create_table(
        "accounts",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "user_id", sa.Integer, sa.ForeignKey("users.id"), unique=True, nullable=False
        ),
        sa.Column("balance", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("daily_limit", sa.Numeric(12, 2), nullable=False, server_default="500000"),
        sa.Column("daily_limit_used", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("daily_limit_date", sa.Date, nullable=True),
        sa.Column("status", _enum("accountstatus"), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # ── rides ─────────────────────────────────────────────────────────
    op.create_table(
        "rides",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("passenger_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("driver_id", sa.Integer, sa.ForeignKey("users.id"), nullable=True),
        sa.Column("origin_lat", sa.Float, nullable=False),
        sa.Column("origin_lng", sa.Float, nullable=False),
        sa.Column("origin_address", sa.String(255), nullable=True),
        sa.Column("dest_lat", sa.Float, nullable=False),
        sa.Column("dest_lng", sa.Float, nullable=False),
        sa.Column("dest_address", sa.String(255), nullable=True),
        sa.Column("distance_km", sa.Float, nullable=False, server_default="0"),
        sa.Column("ride_type", _enum("ridetype"), nullable=False, server_default="ride"),
        sa.Column("requested_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("committed_price", sa.Numeric(12, 2), nullable=True),
        sa.Column("final_price", sa.Numeric(12, 2), nullable=True),
        sa.Column("status", _enum("ridestatus"), nullable=False, server_default="searching"),
        sa.Column(
            "payment_method", _enum("paymentmethod"), nullable=False, server_default="cash"
        ),
        sa.Column(
            "payment_status", _enum("paymentstatus"), nullable=False, server_default="unpaid"
        ),
        sa.Column("cancelled_by", _enum("userrole"), nullable=True),
        sa.Column("cancellation_reason", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("arrived_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("idx_rides_status", "rides", ["status"])
    op.create_index("idx_rides_passenger_status", "rides", ["passenger_id", "status"])
    op.create_index("idx_rides_driver_status", "rides", ["driver_id", "status"])
    op.create_index("idx_rides_created", "rides", ["created_at"])

    # ── negotiation_proposals ─────────────────────────────────────────
    op.create_table(
        "negotiation_proposals",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("ride_id", sa.Integer, sa.ForeignKey("rides.id"), nullable=False),
        sa.Column("sequence", sa.Integer, nullable=False),
        sa.Column("proposed_by", _enum("userrole"), nullable=False, server_default="driver"),
        sa.Column("proposer_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("previous_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("proposed_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("reason", sa.Text, nullable=False),
        sa.Column("status", _enum("proposalstatus"), nullable=False, server_default="pending"),
        sa.Column("response_reason", sa.Text, nullable=True),
        sa.Column("proposed_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("responded_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("ride_id", "sequence", name="uq_proposals_ride_sequence"),
    )
    op.create_index(
        "idx_proposals_ride_status", "negotiation_proposals", ["ride_id", "status"]
    )

    # ── ledger_entries ────────────────────────────────────────────────
    op.create_table(
        "ledger_entries",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("reference_id", sa.String(64), nullable=False),
        sa.Column("account_id", sa.Integer, sa.ForeignKey("accounts.id"), nullable=False),
        sa.Column("ride_id", sa.Integer, sa.ForeignKey("rides.id"), nullable=True),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("balance_after", sa.Numeric(12, 2), nullable=False),
        sa.Column("category", _enum("ledgercategory"), nullable=False),
        sa.Column("actor_id", sa.Integer, sa.ForeignKey("users.id"), nullable=True),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint(
            "reference_id", "account_id", name="uq_ledger_reference_account"
        ),
    )
    op.create_index("idx_ledger_account", "ledger_entries", ["account_id"])
    op.create_index("idx_ledger_ride", "ledger_entries", ["ride_id"])


def downgrade() -> None:
    op.drop_table("ledger_entries")
    op.drop_table("negotiation_proposals")
    op.drop_table("rides")
    op.drop_table("accounts")
    op.drop_table("users")
    for name in reversed(list(ENUMS)):
        op.execute(f"DROP TYPE IF EXISTS {name}")
