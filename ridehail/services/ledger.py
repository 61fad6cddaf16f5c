"""
Ledger Store
============

Every balance change is a pair ``(account.balance update, LedgerEntry)``
written in the same transaction.  Entries are never updated or deleted, so
for every account::

    account.balance == sum(entry.amount for entry in account's entries)

Balance movements happen in exactly two places:

* ``settle_ride`` -- called by the settlement engine inside *its* unit of
  work; debits the passenger and credits the driver under one reference id.
  A passenger without a wallet account is treated like an empty wallet so
  the driver gets the same collect-cash hint.  Daily limits reset on the
  UTC calendar day.
* ``adjust`` -- the administrative override.  It may take a balance below
  zero and is always logged at WARNING with the actor and the reason.

References look like ``RIDE-20250101-1A2B3C4D``.
"""

from __future__ import annotations

import logging
import secrets
from decimal import Decimal
from typing import Optional

from ridehail.config import Settings
from ridehail.domain.entities import AccountSummary, Actor, Reconciliation
from ridehail.domain.enums import AccountStatus, LedgerCategory
from ridehail.domain.errors import (
    AccountUnavailable,
    DailyLimitExceeded,
    Forbidden,
    InsufficientFunds,
    InvalidInput,
    NotFound,
)
from ridehail.domain.pricing import MAX_AMOUNT, check_amount, to_money
from ridehail.infrastructure.locks import row_key
from ridehail.infrastructure.models import AccountModel, LedgerEntryModel, utcnow
from ridehail.infrastructure.notifications import NotificationGateway, user_topic
from ridehail.infrastructure.uow import Storage, UnitOfWork

logger = logging.getLogger(__name__)

ADJUSTMENT_CATEGORIES = frozenset({LedgerCategory.ADJUSTMENT, LedgerCategory.REFUND})


def new_reference(prefix: str) -> str:
    return f"{prefix}-{utcnow():%Y%m%d}-{secrets.token_hex(4).upper()}"


def wallet_payload(account: AccountModel, entry: LedgerEntryModel) -> dict:
    return {
        "user_id": account.user_id,
        "balance": str(account.balance),
        "amount": str(entry.amount),
        "reference_id": entry.reference_id,
        "category": LedgerCategory(entry.category).value,
    }


class LedgerService:
    def __init__(self, storage: Storage, notifier: NotificationGateway, settings: Settings):
        self.storage = storage
        self.notifier = notifier
        self.settings = settings

    # ── Accounts ──────────────────────────────────────────────────────

    async def open_account(
        self, user_id: int, daily_limit: Optional[Decimal] = None
    ) -> AccountModel:
        async with self.storage.unit_of_work("open_account") as uow:
            if await uow.users.get_by_id(user_id) is None:
                raise NotFound(f"User {user_id} not found")
            await uow.lock(row_key("accounts", user_id))
            account = await uow.accounts.get_by_user(user_id)
            if account is None:
                account = await uow.accounts.create(
                    AccountModel(
                        user_id=user_id,
                        balance=Decimal("0.00"),
                        daily_limit=to_money(daily_limit or self.settings.default_daily_limit),
                        daily_limit_used=Decimal("0.00"),
                        status=AccountStatus.ACTIVE,
                    )
                )
        return account

    # ── Settlement leg ────────────────────────────────────────────────

    async def settle_ride(
        self,
        uow: UnitOfWork,
        ride_id: int,
        payer_id: int,
        payee_id: int,
        amount: Decimal,
    ) -> tuple[str, list[LedgerEntryModel], dict[int, AccountModel]]:
        """
        Move *amount* from *payer_id* to *payee_id* inside the caller's unit
        of work.  Raises before writing anything when the move is not allowed,
        so the caller's rollback leaves both accounts untouched.
        """
        amount = to_money(amount)
        await uow.lock(row_key("accounts", payer_id), row_key("accounts", payee_id))

        accounts: dict[int, AccountModel] = {}
        for user_id in sorted({payer_id, payee_id}):
            account = await uow.accounts.get_by_user_for_update(user_id)
            if account is None and user_id == payer_id:
                raise InsufficientFunds(
                    "Passenger has no wallet account, collect the fare in cash",
                    required=str(amount),
                    available="0.00",
                    collect_cash=True,
                )
            if account is None:
                raise NotFound(f"No wallet account for user {user_id}")
            if AccountStatus(account.status) is not AccountStatus.ACTIVE:
                raise AccountUnavailable(
                    f"Wallet account of user {user_id} is {AccountStatus(account.status).value}",
                    user_id=user_id,
                )
            accounts[user_id] = account
        payer, payee = accounts[payer_id], accounts[payee_id]

        overdraft = to_money(self.settings.wallet_overdraft_limit)
        if payer.balance + overdraft < amount:
            raise InsufficientFunds(
                "Passenger wallet balance is insufficient, collect the fare in cash",
                required=str(amount),
                available=str(payer.balance),
                collect_cash=True,
            )

        today = utcnow().date()
        used = payer.daily_limit_used if payer.daily_limit_date == today else Decimal("0")
        if used + amount > payer.daily_limit:
            raise DailyLimitExceeded(
                "Passenger daily wallet limit reached, collect the fare in cash",
                daily_limit=str(payer.daily_limit),
                daily_used=str(used),
                collect_cash=True,
            )

        reference = new_reference("RIDE")
        payer.balance = to_money(payer.balance - amount)
        payer.daily_limit_used = to_money(used + amount)
        payer.daily_limit_date = today
        payee.balance = to_money(payee.balance + amount)

        entries = [
            await uow.ledger.append(
                LedgerEntryModel(
                    reference_id=reference,
                    account_id=payer.id,
                    ride_id=ride_id,
                    amount=-amount,
                    balance_after=payer.balance,
                    category=LedgerCategory.RIDE_SETTLEMENT,
                    actor_id=payee_id,
                    description=f"Payment for ride #{ride_id}",
                )
            ),
            await uow.ledger.append(
                LedgerEntryModel(
                    reference_id=reference,
                    account_id=payee.id,
                    ride_id=ride_id,
                    amount=amount,
                    balance_after=payee.balance,
                    category=LedgerCategory.RIDE_SETTLEMENT,
                    actor_id=payee_id,
                    description=f"Earnings for ride #{ride_id}",
                )
            ),
        ]
        return reference, entries, accounts

    # ── Administrative override ───────────────────────────────────────

    async def adjust(
        self,
        actor: Actor,
        user_id: int,
        amount: Decimal,
        category: LedgerCategory,
        reason: str,
    ) -> LedgerEntryModel:
        if not actor.is_admin:
            raise Forbidden("Only administrators can adjust balances")
        category = LedgerCategory(category)
        if category not in ADJUSTMENT_CATEGORIES:
            raise InvalidInput(f"Category {category.value} cannot be used for adjustments")
        amount = check_amount(amount, "Adjustment amount")
        if amount == 0:
            raise InvalidInput("Adjustment amount must not be zero")
        reason = (reason or "").strip()
        if not reason:
            raise InvalidInput("A reason is required for balance adjustments")

        async with self.storage.unit_of_work("adjust") as uow:
            await uow.lock(row_key("accounts", user_id))
            account = await uow.accounts.get_by_user_for_update(user_id)
            if account is None:
                raise NotFound(f"No wallet account for user {user_id}")
            if abs(account.balance + amount) > MAX_AMOUNT:
                raise InvalidInput(
                    f"Resulting balance would exceed {MAX_AMOUNT}", maximum=str(MAX_AMOUNT)
                )

            account.balance = to_money(account.balance + amount)
            entry = await uow.ledger.append(
                LedgerEntryModel(
                    reference_id=new_reference("ADJ"),
                    account_id=account.id,
                    amount=amount,
                    balance_after=account.balance,
                    category=category,
                    actor_id=actor.id,
                    description=reason,
                )
            )

        logger.warning(
            "Balance override on user %d by admin %d: %s %s (balance now %s) reason=%r",
            user_id, actor.id, category.value, amount, account.balance, reason,
        )
        await self.notifier.publish(
            user_topic(user_id), "wallet_update", wallet_payload(account, entry)
        )
        return entry

    # ── Reads ─────────────────────────────────────────────────────────

    async def reconcile(self, actor: Actor, user_id: int) -> Reconciliation:
        if not actor.is_admin and actor.id != user_id:
            raise Forbidden("You can only reconcile your own account")
        async with self.storage.unit_of_work("reconcile") as uow:
            account = await uow.accounts.get_by_user(user_id)
            if account is None:
                raise NotFound(f"No wallet account for user {user_id}")
            total, count = await uow.ledger.sum_for_account(account.id)

        result = Reconciliation(
            user_id=user_id,
            balance=to_money(account.balance),
            ledger_total=to_money(total),
            entry_count=count,
        )
        if not result.consistent:
            logger.error(
                "Ledger mismatch on user %d: balance=%s ledger=%s",
                user_id, result.balance, result.ledger_total,
            )
        return result

    async def account_summary(
        self, actor: Actor, user_id: int, limit: int = 20
    ) -> AccountSummary:
        if not actor.is_admin and actor.id != user_id:
            raise Forbidden("You can only view your own account")
        async with self.storage.unit_of_work("account_summary") as uow:
            account = await uow.accounts.get_by_user(user_id)
            if account is None:
                raise NotFound(f"No wallet account for user {user_id}")
            entries = await uow.ledger.list_for_account(account.id, limit=limit)
        return AccountSummary(account=account, entries=entries)
