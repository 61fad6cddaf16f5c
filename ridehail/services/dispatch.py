"""
Dispatch Engine
===============

Persists ride requests, fans them out to eligible drivers and hands each ride
to exactly one driver.

Accept protocol
---------------
1. Lock the driver's user row, then the ride row (users before rides).
2. Re-read both rows with ``SELECT ... FOR UPDATE`` under those locks.
3. Only the caller that observes ``status == searching`` proceeds; every
   other caller gets ``RideAlreadyTaken``.
4. The driver's own active-ride check runs inside the same lock scope, so
   one driver racing for two rides cannot win both.

There is no dispatch timeout: a ride stays ``searching`` until a driver
accepts it or the passenger cancels it.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Optional

from ridehail.config import Settings
from ridehail.domain.entities import Actor, DispatchOutcome, Location
from ridehail.domain.enums import (
    PaymentMethod,
    RideStatus,
    RideType,
    Role,
)
from ridehail.domain.errors import (
    ActiveRideExists,
    CancelReasonRequired,
    DriverAlreadyBusy,
    Forbidden,
    InvalidPrice,
    NotFound,
    RideAlreadyTaken,
)
from ridehail.domain.geo import haversine_km
from ridehail.domain.lifecycle import authorize_status_change, participant_role
from ridehail.domain.pricing import FareEstimator, check_amount
from ridehail.infrastructure.locks import row_key
from ridehail.infrastructure.models import RideModel, utcnow
from ridehail.infrastructure.notifications import (
    DRIVER_POOL_TOPIC,
    NotificationGateway,
    ride_payload,
    ride_topic,
    user_topic,
)
from ridehail.infrastructure.presence import PresenceRegistry
from ridehail.infrastructure.uow import Storage

logger = logging.getLogger(__name__)

_STATUS_TIMESTAMPS = {
    RideStatus.ARRIVED: "arrived_at",
    RideStatus.STARTED: "started_at",
    RideStatus.CANCELLED: "cancelled_at",
}


def build_fare_estimator(settings: Settings) -> FareEstimator:
    return FareEstimator(
        {
            RideType.RIDE: (settings.base_fare, settings.rate_per_km),
            RideType.MOTO: (settings.moto_base_fare, settings.moto_rate_per_km),
            RideType.DELIVERY: (
                settings.delivery_base_fare,
                settings.delivery_rate_per_km,
            ),
        },
        rounding_step=settings.fare_rounding_step,
        minimum_fare=settings.minimum_fare,
    )


class DispatchEngine:
    def __init__(
        self,
        storage: Storage,
        notifier: NotificationGateway,
        presence: PresenceRegistry,
        settings: Settings,
        fares: Optional[FareEstimator] = None,
    ):
        self.storage = storage
        self.notifier = notifier
        self.presence = presence
        self.settings = settings
        self.fares = fares or build_fare_estimator(settings)

    # ── Request ───────────────────────────────────────────────────────

    async def request_ride(
        self,
        actor: Actor,
        origin: Location,
        destination: Location,
        price_offer: Optional[Decimal] = None,
        distance_km: Optional[float] = None,
        ride_type: RideType = RideType.RIDE,
        payment_method: PaymentMethod = PaymentMethod.CASH,
    ) -> DispatchOutcome:
        if actor.role is not Role.PASSENGER:
            raise Forbidden("Only passengers can request rides")

        if distance_km is None:
            distance_km = haversine_km(
                origin.latitude, origin.longitude,
                destination.latitude, destination.longitude,
            )
        distance_km = round(distance_km, 2)

        if price_offer is None:
            price = check_amount(self.fares.estimate(ride_type, distance_km), "Fare estimate")
        else:
            price = check_amount(price_offer, "Price offer")
            if price < self.fares.minimum_fare:
                raise InvalidPrice(
                    f"Minimum price is {self.fares.minimum_fare}",
                    minimum=str(self.fares.minimum_fare),
                )

        async with self.storage.unit_of_work("request_ride") as uow:
            await uow.lock(row_key("users", actor.id))
            passenger = await uow.users.get_for_update(actor.id)
            if passenger is None:
                raise NotFound(f"User {actor.id} not found")
            if passenger.is_blocked:
                raise Forbidden("Your account is blocked")

            active = await uow.rides.get_active_for_passenger(actor.id)
            if active is not None:
                raise ActiveRideExists(
                    "You already have an active ride", ride_id=active.id
                )

            ride = await uow.rides.create(
                RideModel(
                    passenger_id=actor.id,
                    origin_lat=origin.latitude,
                    origin_lng=origin.longitude,
                    origin_address=origin.address,
                    dest_lat=destination.latitude,
                    dest_lng=destination.longitude,
                    dest_address=destination.address,
                    distance_km=distance_km,
                    ride_type=ride_type,
                    requested_price=price,
                    status=RideStatus.SEARCHING,
                    payment_method=payment_method,
                )
            )

            online = {p.driver_id: p for p in self.presence.online()}
            eligible = await uow.users.get_dispatchable_drivers(
                d for d in online if d != actor.id
            )

        logger.info(
            "Ride %d requested by passenger %d (price=%s, %.2f km)",
            ride.id, actor.id, ride.requested_price, distance_km,
        )

        targets = sorted(
            (
                haversine_km(
                    online[d.id].latitude, online[d.id].longitude,
                    origin.latitude, origin.longitude,
                ),
                d.id,
            )
            for d in eligible
        )
        payload = ride_payload(ride)
        for distance_to_pickup, driver_id in targets:
            await self.notifier.publish(
                user_topic(driver_id),
                "new_ride_request",
                {**payload, "distance_to_pickup_km": round(distance_to_pickup, 2)},
            )

        await self.notifier.publish(
            user_topic(actor.id),
            "ride_requested",
            {**payload, "drivers_notified": len(targets)},
        )
        if not targets:
            logger.info("No drivers available for ride %d", ride.id)
            await self.notifier.publish(
                user_topic(actor.id),
                "ride_no_drivers",
                {"ride_id": ride.id, "message": "No drivers available right now"},
            )

        return DispatchOutcome(ride=ride, drivers_notified=len(targets))

    # ── Accept ────────────────────────────────────────────────────────

    async def accept_ride(self, actor: Actor, ride_id: int) -> RideModel:
        if actor.role is not Role.DRIVER:
            raise Forbidden("Only drivers can accept rides")

        async with self.storage.unit_of_work("accept_ride") as uow:
            await uow.lock(row_key("users", actor.id))
            await uow.lock(row_key("rides", ride_id))

            driver = await uow.users.get_for_update(actor.id)
            if driver is None:
                raise NotFound(f"User {actor.id} not found")
            if driver.is_blocked or not driver.is_verified:
                raise Forbidden("Your driver account is not cleared to accept rides")

            ride = await uow.rides.get_for_update(ride_id)
            if ride is None:
                raise NotFound(f"Ride {ride_id} not found")
            if ride.passenger_id == actor.id:
                raise Forbidden("You cannot accept your own ride")
            if RideStatus(ride.status) is not RideStatus.SEARCHING:
                raise RideAlreadyTaken("This ride is no longer available")

            busy = await uow.rides.get_active_for_driver(actor.id)
            if busy is not None:
                raise DriverAlreadyBusy(
                    "You already have an active ride", active_ride_id=busy.id
                )

            ride.status = RideStatus.ACCEPTED
            ride.driver_id = actor.id
            ride.accepted_at = utcnow()
            await uow.session.flush()

        logger.info("Ride %d accepted by driver %d", ride.id, actor.id)

        payload = ride_payload(ride)
        await self.notifier.publish(user_topic(ride.passenger_id), "ride_accepted", payload)
        await self.notifier.publish(ride_topic(ride.id), "ride_accepted", payload)
        await self.notifier.publish(user_topic(actor.id), "ride_accepted", payload)
        await self.notifier.publish(
            DRIVER_POOL_TOPIC, "ride_taken", {"ride_id": ride.id, "driver_id": actor.id}
        )
        return ride

    # ── Status transitions ────────────────────────────────────────────

    async def update_status(
        self,
        actor: Actor,
        ride_id: int,
        new_status: RideStatus,
        reason: Optional[str] = None,
    ) -> RideModel:
        new_status = RideStatus(new_status)
        if new_status is RideStatus.CANCELLED:
            reason = (reason or "").strip()
            if len(reason) < self.settings.min_cancel_reason_length:
                raise CancelReasonRequired(
                    "A cancellation reason of at least "
                    f"{self.settings.min_cancel_reason_length} characters is required"
                )

        async with self.storage.unit_of_work("update_status") as uow:
            await uow.lock(row_key("rides", ride_id))
            ride = await uow.rides.get_for_update(ride_id)
            if ride is None:
                raise NotFound(f"Ride {ride_id} not found")

            previous = RideStatus(ride.status)
            role = authorize_status_change(ride, actor, new_status)

            ride.status = new_status
            setattr(ride, _STATUS_TIMESTAMPS[new_status], utcnow())
            if new_status is RideStatus.CANCELLED:
                ride.cancelled_by = role
                ride.cancellation_reason = reason
            await uow.session.flush()

        logger.info(
            "Ride %d: %s -> %s by %s %d",
            ride.id, previous.value, new_status.value, role.value, actor.id,
        )

        payload = {
            **ride_payload(ride),
            "previous_status": previous.value,
            "changed_by": role.value,
            "reason": ride.cancellation_reason,
        }
        recipients = {ride.passenger_id, ride.driver_id} - {None, actor.id}
        for user_id in sorted(recipients):
            await self.notifier.publish(user_topic(user_id), "ride_status_update", payload)
        await self.notifier.publish(ride_topic(ride.id), "ride_status_update", payload)
        if new_status is RideStatus.CANCELLED and previous is RideStatus.SEARCHING:
            await self.notifier.publish(
                DRIVER_POOL_TOPIC, "ride_request_cancelled", {"ride_id": ride.id}
            )
        return ride

    # ── Reads ─────────────────────────────────────────────────────────

    async def get_ride(self, actor: Actor, ride_id: int) -> RideModel:
        async with self.storage.unit_of_work("get_ride") as uow:
            ride = await uow.rides.get_by_id(ride_id)
        if ride is None:
            raise NotFound(f"Ride {ride_id} not found")
        if participant_role(ride, actor) is not None or actor.is_admin:
            return ride
        if actor.role is Role.DRIVER and RideStatus(ride.status) is RideStatus.SEARCHING:
            return ride
        raise Forbidden("You are not a participant of this ride")

    async def ride_history(self, actor: Actor, limit: Optional[int] = None) -> list[RideModel]:
        limit = limit or self.settings.history_limit
        async with self.storage.unit_of_work("ride_history") as uow:
            return await uow.rides.get_history_for_user(actor.id, limit=limit)

    async def active_rides(self, actor: Actor) -> list[RideModel]:
        async with self.storage.unit_of_work("active_rides") as uow:
            return await uow.rides.get_active_for_user(actor.id)
