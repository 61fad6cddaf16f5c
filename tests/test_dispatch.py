"""
Dispatch engine tests: ride requests, driver fan-out, the race-safe accept
protocol and manual status transitions.
"""

import asyncio
from decimal import Decimal

import pytest
from sqlalchemy import update

from ridehail.domain.enums import RideStatus, Role
from ridehail.domain.errors import (
    ActiveRideExists,
    CancelReasonRequired,
    DriverAlreadyBusy,
    Forbidden,
    InvalidInput,
    InvalidPrice,
    InvalidTransition,
    NotFound,
    RideAlreadyTaken,
)
from ridehail.domain.geo import haversine_km
from ridehail.infrastructure.locks import LocalRowLocks
from ridehail.infrastructure.models import UserModel
from ridehail.infrastructure.notifications import DRIVER_POOL_TOPIC, user_topic
from ridehail.services.container import build_services
from tests.conftest import DROPOFF, PICKUP


class ExplodingGateway:
    async def publish(self, topic, event, payload):
        raise ConnectionError("pub/sub is down")


class TestRequestRide:
    @pytest.mark.asyncio
    async def test_persists_searching_ride_with_estimate(self, services, cast):
        outcome = await services.dispatch.request_ride(
            cast.passenger, PICKUP, DROPOFF, distance_km=4.0
        )
        ride = outcome.ride
        assert ride.id is not None
        assert ride.status == RideStatus.SEARCHING
        assert ride.driver_id is None
        assert ride.requested_price == Decimal("1800.00")
        assert ride.committed_price is None

    @pytest.mark.asyncio
    async def test_explicit_offer_is_kept(self, services, cast):
        outcome = await services.dispatch.request_ride(
            cast.passenger, PICKUP, DROPOFF, price_offer=Decimal("1500"), distance_km=4.0
        )
        assert outcome.ride.requested_price == Decimal("1500.00")

    @pytest.mark.asyncio
    async def test_distance_falls_back_to_great_circle(self, services, cast):
        outcome = await services.dispatch.request_ride(cast.passenger, PICKUP, DROPOFF)
        expected = haversine_km(
            PICKUP.latitude, PICKUP.longitude, DROPOFF.latitude, DROPOFF.longitude
        )
        assert outcome.ride.distance_km == pytest.approx(expected, abs=0.01)

    @pytest.mark.asyncio
    async def test_offer_below_minimum_fare_rejected(self, services, cast):
        with pytest.raises(InvalidPrice):
            await services.dispatch.request_ride(
                cast.passenger, PICKUP, DROPOFF, price_offer=Decimal("100")
            )

    @pytest.mark.asyncio
    async def test_offer_too_large_to_store(self, services, cast, notifier):
        with pytest.raises(InvalidInput) as exc:
            await services.dispatch.request_ride(
                cast.passenger, PICKUP, DROPOFF, price_offer=Decimal("10000000000000")
            )
        assert exc.value.extra["maximum"] == "9999999999.99"
        assert notifier.named("ride_requested") == []

    @pytest.mark.asyncio
    async def test_only_passengers_request(self, services, cast):
        with pytest.raises(Forbidden):
            await services.dispatch.request_ride(cast.driver1, PICKUP, DROPOFF)

    @pytest.mark.asyncio
    async def test_blocked_passenger_rejected(self, services, cast, session_factory):
        async with session_factory() as session:
            await session.execute(
                update(UserModel).where(UserModel.id == cast.passenger.id).values(is_blocked=True)
            )
            await session.commit()
        with pytest.raises(Forbidden):
            await services.dispatch.request_ride(cast.passenger, PICKUP, DROPOFF)

    @pytest.mark.asyncio
    async def test_second_active_ride_rejected(self, services, cast, make_ride):
        first = await make_ride()
        with pytest.raises(ActiveRideExists) as exc:
            await services.dispatch.request_ride(cast.passenger, PICKUP, DROPOFF)
        assert exc.value.extra["active_ride_id"] == first.id

    @pytest.mark.asyncio
    async def test_concurrent_requests_create_one_ride(self, services, cast):
        results = await asyncio.gather(
            services.dispatch.request_ride(cast.passenger, PICKUP, DROPOFF),
            services.dispatch.request_ride(cast.passenger, PICKUP, DROPOFF),
            return_exceptions=True,
        )
        errors = [r for r in results if isinstance(r, Exception)]
        assert len(errors) == 1
        assert isinstance(errors[0], ActiveRideExists)


class TestDriverFanOut:
    @pytest.mark.asyncio
    async def test_nearest_eligible_drivers_notified_first(
        self, services, cast, presence, notifier
    ):
        presence.connect(cast.driver2.id, -8.90, 13.30)  # ~7 km away
        presence.connect(cast.driver1.id, -8.84, 13.29)  # next door
        presence.connect(cast.unverified_driver.id, -8.84, 13.29)

        outcome = await services.dispatch.request_ride(cast.passenger, PICKUP, DROPOFF)

        assert outcome.drivers_notified == 2
        offers = notifier.named("new_ride_request")
        assert [e.topic for e in offers] == [
            user_topic(cast.driver1.id),
            user_topic(cast.driver2.id),
        ]
        assert offers[0].payload["distance_to_pickup_km"] < offers[1].payload["distance_to_pickup_km"]
        assert offers[0].payload["ride_id"] == outcome.ride.id

        requested = notifier.on(user_topic(cast.passenger.id))
        assert [e.event for e in requested] == ["ride_requested"]
        assert requested[0].payload["drivers_notified"] == 2

    @pytest.mark.asyncio
    async def test_no_drivers_online(self, services, cast, notifier):
        outcome = await services.dispatch.request_ride(cast.passenger, PICKUP, DROPOFF)
        assert outcome.drivers_notified == 0
        assert outcome.ride.status == RideStatus.SEARCHING
        assert [e.event for e in notifier.on(user_topic(cast.passenger.id))] == [
            "ride_requested",
            "ride_no_drivers",
        ]

    @pytest.mark.asyncio
    async def test_busy_and_stale_drivers_skipped(
        self, services, cast, presence, clock, make_ride, notifier
    ):
        presence.connect(cast.driver1.id, -8.84, 13.29)
        await make_ride(RideStatus.ACCEPTED, passenger=cast.passenger2, driver=cast.driver1)

        presence.connect(cast.driver2.id, -8.84, 13.29)
        clock.advance(services.settings.presence_stale_seconds + 1)
        presence.heartbeat(cast.driver1.id, -8.84, 13.29)

        outcome = await services.dispatch.request_ride(cast.passenger, PICKUP, DROPOFF)
        assert outcome.drivers_notified == 0

    @pytest.mark.asyncio
    async def test_publish_failure_keeps_ride(self, test_settings, session_factory, cast, presence):
        broken = build_services(
            test_settings,
            session_factory,
            notifier=ExplodingGateway(),
            row_locks=LocalRowLocks(),
            presence=presence,
        )
        presence.connect(cast.driver1.id, -8.84, 13.29)

        outcome = await broken.dispatch.request_ride(cast.passenger, PICKUP, DROPOFF)

        stored = await broken.dispatch.get_ride(cast.passenger, outcome.ride.id)
        assert stored.status == RideStatus.SEARCHING


class TestAcceptRide:
    @pytest.mark.asyncio
    async def test_accept_assigns_driver(self, services, cast, make_ride, notifier):
        ride = await make_ride()
        accepted = await services.dispatch.accept_ride(cast.driver1, ride.id)

        assert accepted.status == RideStatus.ACCEPTED
        assert accepted.driver_id == cast.driver1.id
        assert accepted.accepted_at is not None
        assert [e.event for e in notifier.on(user_topic(cast.passenger.id))][-1] == "ride_accepted"
        taken = notifier.on(DRIVER_POOL_TOPIC)
        assert taken[-1].event == "ride_taken"
        assert taken[-1].payload == {"ride_id": ride.id, "driver_id": cast.driver1.id}

    @pytest.mark.asyncio
    async def test_scenario_a_exactly_one_driver_wins(self, services, cast, make_ride):
        ride = await make_ride(price="1500")

        results = await asyncio.gather(
            services.dispatch.accept_ride(cast.driver1, ride.id),
            services.dispatch.accept_ride(cast.driver2, ride.id),
            return_exceptions=True,
        )

        winners = [r for r in results if not isinstance(r, Exception)]
        losers = [r for r in results if isinstance(r, Exception)]
        assert len(winners) == 1 and len(losers) == 1
        assert isinstance(losers[0], RideAlreadyTaken)
        assert losers[0].kind == "conflict"

        stored = await services.dispatch.get_ride(cast.passenger, ride.id)
        assert stored.status == RideStatus.ACCEPTED
        assert stored.driver_id == winners[0].driver_id

    @pytest.mark.asyncio
    async def test_late_claim_rejected(self, services, cast, make_ride):
        ride = await make_ride(RideStatus.ACCEPTED)
        with pytest.raises(RideAlreadyTaken):
            await services.dispatch.accept_ride(cast.driver2, ride.id)

    @pytest.mark.asyncio
    async def test_busy_driver_rejected(self, services, cast, make_ride):
        await make_ride(RideStatus.STARTED, passenger=cast.passenger2, driver=cast.driver1)
        ride = await make_ride()
        with pytest.raises(DriverAlreadyBusy):
            await services.dispatch.accept_ride(cast.driver1, ride.id)

    @pytest.mark.asyncio
    async def test_one_driver_racing_for_two_rides_wins_one(self, services, cast, make_ride):
        first = await make_ride()
        second = await make_ride(passenger=cast.passenger2)

        results = await asyncio.gather(
            services.dispatch.accept_ride(cast.driver1, first.id),
            services.dispatch.accept_ride(cast.driver1, second.id),
            return_exceptions=True,
        )
        errors = [r for r in results if isinstance(r, Exception)]
        assert len(errors) == 1
        assert isinstance(errors[0], DriverAlreadyBusy)

    @pytest.mark.asyncio
    async def test_unverified_driver_forbidden(self, services, cast, make_ride):
        ride = await make_ride()
        with pytest.raises(Forbidden):
            await services.dispatch.accept_ride(cast.unverified_driver, ride.id)

    @pytest.mark.asyncio
    async def test_passenger_cannot_accept(self, services, cast, make_ride):
        ride = await make_ride()
        with pytest.raises(Forbidden):
            await services.dispatch.accept_ride(cast.passenger2, ride.id)

    @pytest.mark.asyncio
    async def test_unknown_ride(self, services, cast):
        with pytest.raises(NotFound):
            await services.dispatch.accept_ride(cast.driver1, 999)


class TestUpdateStatus:
    @pytest.mark.asyncio
    async def test_scenario_e_passenger_cancels_searching(
        self, services, cast, make_ride, notifier
    ):
        ride = await make_ride()
        cancelled = await services.dispatch.update_status(
            cast.passenger, ride.id, RideStatus.CANCELLED, "changed my mind"
        )

        assert cancelled.status == RideStatus.CANCELLED
        assert cancelled.driver_id is None
        assert cancelled.cancelled_by == Role.PASSENGER
        assert cancelled.cancellation_reason == "changed my mind"
        assert cancelled.cancelled_at is not None
        assert notifier.on(DRIVER_POOL_TOPIC)[-1].event == "ride_request_cancelled"

        assert await services.dispatch.active_rides(cast.passenger) == []
        again = await services.dispatch.request_ride(cast.passenger, PICKUP, DROPOFF)
        assert again.ride.status == RideStatus.SEARCHING

    @pytest.mark.asyncio
    async def test_cancel_requires_reason(self, services, cast, make_ride):
        ride = await make_ride()
        with pytest.raises(CancelReasonRequired):
            await services.dispatch.update_status(cast.passenger, ride.id, RideStatus.CANCELLED, " ok ")

    @pytest.mark.asyncio
    async def test_driver_advances_and_passenger_is_told(
        self, services, cast, make_ride, notifier
    ):
        ride = await make_ride(RideStatus.ACCEPTED)
        arrived = await services.dispatch.update_status(cast.driver1, ride.id, RideStatus.ARRIVED)
        assert arrived.arrived_at is not None
        started = await services.dispatch.update_status(cast.driver1, ride.id, RideStatus.STARTED)
        assert started.status == RideStatus.STARTED
        assert started.started_at is not None

        updates = [e for e in notifier.on(user_topic(cast.passenger.id)) if e.event == "ride_status_update"]
        assert [u.payload["status"] for u in updates] == ["arrived", "started"]
        assert not [
            e for e in notifier.on(user_topic(cast.driver1.id)) if e.event == "ride_status_update"
        ]

    @pytest.mark.asyncio
    async def test_driver_cannot_cancel_searching_ride(self, services, cast, make_ride):
        ride = await make_ride()
        with pytest.raises(Forbidden):
            await services.dispatch.update_status(
                cast.driver1, ride.id, RideStatus.CANCELLED, "not my ride"
            )

    @pytest.mark.asyncio
    async def test_accepted_is_reserved_for_accept(self, services, cast, make_ride):
        ride = await make_ride()
        with pytest.raises(InvalidTransition):
            await services.dispatch.update_status(cast.passenger, ride.id, RideStatus.ACCEPTED)

    @pytest.mark.asyncio
    async def test_completed_is_reserved_for_settlement(self, services, cast, make_ride):
        ride = await make_ride(RideStatus.STARTED)
        with pytest.raises(InvalidTransition):
            await services.dispatch.update_status(cast.driver1, ride.id, RideStatus.COMPLETED)

    @pytest.mark.asyncio
    async def test_skipping_a_step_is_invalid(self, services, cast, make_ride):
        ride = await make_ride(RideStatus.ACCEPTED)
        with pytest.raises(InvalidTransition):
            await services.dispatch.update_status(cast.driver1, ride.id, RideStatus.STARTED)

    @pytest.mark.asyncio
    async def test_driver_cancels_started_ride(self, services, cast, make_ride, notifier):
        ride = await make_ride(RideStatus.STARTED)
        cancelled = await services.dispatch.update_status(
            cast.driver1, ride.id, RideStatus.CANCELLED, "vehicle breakdown"
        )
        assert cancelled.cancelled_by == Role.DRIVER
        assert cancelled.driver_id == cast.driver1.id
        assert notifier.on(user_topic(cast.passenger.id))[-1].event == "ride_status_update"

    @pytest.mark.asyncio
    async def test_admin_cancels(self, services, cast, make_ride):
        ride = await make_ride(RideStatus.ACCEPTED)
        cancelled = await services.dispatch.update_status(
            cast.admin, ride.id, RideStatus.CANCELLED, "fraud review"
        )
        assert cancelled.cancelled_by == Role.ADMIN

    @pytest.mark.asyncio
    async def test_cancelled_ride_is_frozen(self, services, cast, make_ride):
        ride = await make_ride()
        await services.dispatch.update_status(
            cast.passenger, ride.id, RideStatus.CANCELLED, "changed my mind"
        )
        with pytest.raises(InvalidTransition):
            await services.dispatch.update_status(
                cast.passenger, ride.id, RideStatus.CANCELLED, "again please"
            )
        with pytest.raises(RideAlreadyTaken):
            await services.dispatch.accept_ride(cast.driver1, ride.id)

    @pytest.mark.asyncio
    async def test_outsider_forbidden(self, services, cast, make_ride):
        ride = await make_ride(RideStatus.ACCEPTED)
        with pytest.raises(Forbidden):
            await services.dispatch.update_status(cast.driver2, ride.id, RideStatus.ARRIVED)


class TestReads:
    @pytest.mark.asyncio
    async def test_get_ride_visibility(self, services, cast, make_ride):
        ride = await make_ride()
        assert (await services.dispatch.get_ride(cast.driver2, ride.id)).id == ride.id
        assert (await services.dispatch.get_ride(cast.admin, ride.id)).id == ride.id
        with pytest.raises(Forbidden):
            await services.dispatch.get_ride(cast.passenger2, ride.id)

        await services.dispatch.accept_ride(cast.driver1, ride.id)
        with pytest.raises(Forbidden):
            await services.dispatch.get_ride(cast.driver2, ride.id)

    @pytest.mark.asyncio
    async def test_get_unknown_ride(self, services, cast):
        with pytest.raises(NotFound):
            await services.dispatch.get_ride(cast.passenger, 12345)

    @pytest.mark.asyncio
    async def test_history_newest_first(self, services, cast, make_ride):
        first = await make_ride()
        await services.dispatch.update_status(
            cast.passenger, first.id, RideStatus.CANCELLED, "wrong address"
        )
        second = await make_ride(RideStatus.ACCEPTED)

        history = await services.dispatch.ride_history(cast.passenger)
        assert [r.id for r in history] == [second.id, first.id]
        assert [r.id for r in await services.dispatch.ride_history(cast.passenger, limit=1)] == [second.id]
        assert [r.id for r in await services.dispatch.ride_history(cast.driver1)] == [second.id]

    @pytest.mark.asyncio
    async def test_active_rides(self, services, cast, make_ride):
        ride = await make_ride(RideStatus.ARRIVED)
        assert [r.id for r in await services.dispatch.active_rides(cast.passenger)] == [ride.id]
        assert [r.id for r in await services.dispatch.active_rides(cast.driver1)] == [ride.id]
        assert await services.dispatch.active_rides(cast.driver2) == []
        assert await services.dispatch.active_rides(cast.passenger2) == []
