"""
Settlement Engine
=================

Closes a ``started`` ride in one unit of work:

1. Lock the driver's user row, the ride row, then (wallet only) both
   account rows.
2. Resolve the final price: explicit value, else the committed price, else
   the requested price.
3. Reject prices above ``max_final_price_multiplier x agreed price``, the
   agreed price being the larger of the requested and committed prices.
4. Wallet: debit passenger, credit driver, two ledger entries under one
   reference, ``payment_status = paid``.
   Cash: no ledger movement, ``payment_status = awaiting_collection``.
5. Mark the ride ``completed`` and nudge the driver's rating.

Any failure rolls the whole unit back, so a ride whose wallet payment was
refused is still ``started`` and the driver can collect cash instead.

NOTE: the multiplier lets a driver charge up to twice the agreed price
without a fresh passenger approval.  Kept as-is pending product review.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Optional

from ridehail.config import Settings
from ridehail.domain.entities import Actor, SettlementResult
from ridehail.domain.enums import (
    LEDGER_BACKED_METHODS,
    PaymentMethod,
    PaymentStatus,
    RideStatus,
    Role,
)
from ridehail.domain.errors import (
    Forbidden,
    InvalidInput,
    InvalidRideState,
    NotFound,
    PriceOutOfBounds,
)
from ridehail.domain.lifecycle import participant_role
from ridehail.domain.pricing import check_amount, settlement_ceiling, to_money
from ridehail.infrastructure.locks import row_key
from ridehail.infrastructure.models import utcnow
from ridehail.infrastructure.notifications import (
    NotificationGateway,
    ride_payload,
    ride_topic,
    user_topic,
)
from ridehail.infrastructure.uow import Storage
from ridehail.services.ledger import LedgerService, wallet_payload

logger = logging.getLogger(__name__)


class SettlementEngine:
    def __init__(
        self,
        storage: Storage,
        notifier: NotificationGateway,
        ledger: LedgerService,
        settings: Settings,
    ):
        self.storage = storage
        self.notifier = notifier
        self.ledger = ledger
        self.settings = settings

    async def complete(
        self,
        actor: Actor,
        ride_id: int,
        final_price: Optional[Decimal] = None,
        payment_method: PaymentMethod = PaymentMethod.CASH,
    ) -> SettlementResult:
        payment_method = PaymentMethod(payment_method)
        if final_price is not None:
            final_price = check_amount(final_price, "Final price")
            if final_price <= 0:
                raise InvalidInput("Final price must be positive")

        async with self.storage.unit_of_work("complete") as uow:
            await uow.lock(row_key("users", actor.id))
            await uow.lock(row_key("rides", ride_id))
            ride = await uow.rides.get_for_update(ride_id)
            if ride is None:
                raise NotFound(f"Ride {ride_id} not found")
            if participant_role(ride, actor) is not Role.DRIVER:
                raise Forbidden("Only the assigned driver can complete the ride")
            if RideStatus(ride.status) is not RideStatus.STARTED:
                raise InvalidRideState(
                    f"Only started rides can be completed (ride is "
                    f"{RideStatus(ride.status).value})"
                )

            amount = final_price or to_money(ride.committed_price or ride.requested_price)
            agreed = max(ride.requested_price, ride.committed_price or ride.requested_price)
            ceiling = settlement_ceiling(agreed, self.settings.max_final_price_multiplier)
            if amount > ceiling:
                raise PriceOutOfBounds(
                    f"Final price {amount} exceeds the allowed maximum {ceiling}; "
                    "the passenger must approve it first",
                    maximum=str(ceiling),
                )

            reference, entries, accounts = None, [], {}
            if payment_method in LEDGER_BACKED_METHODS:
                reference, entries, accounts = await self.ledger.settle_ride(
                    uow, ride.id, ride.passenger_id, actor.id, amount
                )
                payment_status = PaymentStatus.PAID
            else:
                payment_status = PaymentStatus.AWAITING_COLLECTION

            ride.status = RideStatus.COMPLETED
            ride.final_price = amount
            ride.payment_method = payment_method
            ride.payment_status = payment_status
            ride.completed_at = utcnow()
            await uow.users.nudge_rating(
                actor.id, self.settings.rating_increment, self.settings.rating_max
            )
            await uow.session.flush()

        logger.info(
            "Ride %d completed by driver %d: %s via %s (%s)",
            ride.id, actor.id, amount, payment_method.value, payment_status.value,
        )

        payload = {**ride_payload(ride), "reference_id": reference}
        await self.notifier.publish(user_topic(ride.passenger_id), "ride_completed", payload)
        await self.notifier.publish(user_topic(actor.id), "ride_completed", payload)
        await self.notifier.publish(ride_topic(ride.id), "ride_completed", payload)
        for entry in entries:
            account = next(a for a in accounts.values() if a.id == entry.account_id)
            await self.notifier.publish(
                user_topic(account.user_id), "wallet_update", wallet_payload(account, entry)
            )

        return SettlementResult(
            ride=ride,
            amount=amount,
            payment_status=payment_status,
            reference_id=reference,
            entries=entries,
        )
