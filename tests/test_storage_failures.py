"""
Storage outage tests.

A database error raised while an engine writes, or while its unit of work
commits, must reach the caller as a retryable ``Unavailable`` and leave every
row as it was before the call.  Redis outages in the row-lock backend are
covered in ``test_concurrency``.
"""

from decimal import Decimal
from unittest.mock import patch

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from ridehail.domain.enums import PaymentMethod, RideStatus
from ridehail.domain.errors import Unavailable
from ridehail.infrastructure.models import LedgerEntryModel, RideModel


def disk_error(statement: str) -> OperationalError:
    return OperationalError(statement, {}, Exception("disk I/O error"))


async def stored_ride(session_factory, ride_id):
    async with session_factory() as session:
        return await session.get(RideModel, ride_id)


async def ledger_rows_for_ride(session_factory, ride_id):
    async with session_factory() as session:
        result = await session.execute(
            select(LedgerEntryModel).where(LedgerEntryModel.ride_id == ride_id)
        )
        return list(result.scalars().all())


class TestCommitFailure:
    @pytest.mark.asyncio
    async def test_accept_ride(self, services, cast, make_ride, notifier, session_factory, caplog):
        ride = await make_ride(RideStatus.SEARCHING)

        with patch.object(AsyncSession, "commit", side_effect=disk_error("COMMIT")):
            with pytest.raises(Unavailable) as exc:
                await services.dispatch.accept_ride(cast.driver1, ride.id)

        assert exc.value.retryable is True
        assert exc.value.to_dict()["kind"] == "unavailable"
        assert isinstance(exc.value.__cause__, OperationalError)
        assert "accept_ride" in caplog.text

        stored = await stored_ride(session_factory, ride.id)
        assert stored.status == RideStatus.SEARCHING
        assert stored.driver_id is None
        assert notifier.named("ride_accepted") == []

        # the same call goes through once storage is back
        accepted = await services.dispatch.accept_ride(cast.driver1, ride.id)
        assert accepted.driver_id == cast.driver1.id

    @pytest.mark.asyncio
    async def test_locks_are_released(self, services, cast, make_ride):
        ride = await make_ride(RideStatus.SEARCHING)
        with patch.object(AsyncSession, "commit", side_effect=disk_error("COMMIT")):
            with pytest.raises(Unavailable):
                await services.dispatch.accept_ride(cast.driver1, ride.id)

        locks = services.storage.row_locks
        assert not locks.is_held(f"rides:{ride.id}")
        assert not locks.is_held(f"users:{cast.driver1.id}")


class TestFlushFailure:
    @pytest.mark.asyncio
    async def test_wallet_completion(self, services, cast, make_ride, fund, notifier, session_factory):
        await fund(cast.passenger, "5000")
        ride = await make_ride(RideStatus.STARTED, price="1500")
        published = len(notifier.events)

        with patch.object(AsyncSession, "flush", side_effect=disk_error("INSERT")):
            with pytest.raises(Unavailable) as exc:
                await services.settlement.complete(
                    cast.driver1, ride.id, payment_method=PaymentMethod.WALLET
                )

        assert exc.value.retryable is True
        stored = await stored_ride(session_factory, ride.id)
        assert stored.status == RideStatus.STARTED
        assert stored.final_price is None
        assert await ledger_rows_for_ride(session_factory, ride.id) == []
        passenger = await services.ledger.account_summary(cast.passenger, cast.passenger.id)
        driver = await services.ledger.account_summary(cast.driver1, cast.driver1.id)
        assert passenger.account.balance == Decimal("5000.00")
        assert passenger.account.daily_limit_used == Decimal("0.00")
        assert driver.account.balance == Decimal("0.00")
        assert len(notifier.events) == published

        result = await services.settlement.complete(
            cast.driver1, ride.id, payment_method=PaymentMethod.WALLET
        )
        assert result.amount == Decimal("1500.00")
        assert len(await ledger_rows_for_ride(session_factory, ride.id)) == 2
