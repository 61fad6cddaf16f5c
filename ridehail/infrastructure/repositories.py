"""
Repository Pattern -- abstracts DB access so domain logic stays DB-agnostic.

Each repository receives an ``AsyncSession`` (unit-of-work) and exposes
domain-relevant queries only.  ``*_for_update`` variants issue
``SELECT ... FOR UPDATE`` and refresh the identity map, so a caller holding
the row lock always sees the committed row, never a stale cached copy.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy import case, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    AccountModel,
    LedgerEntryModel,
    NegotiationProposalModel,
    RideModel,
    UserModel,
)
from ridehail.domain.enums import (
    ACTIVE_DRIVER_STATUSES,
    ACTIVE_PASSENGER_STATUSES,
    ProposalStatus,
    Role,
)


class UserRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, user: UserModel) -> UserModel:
        self.session.add(user)
        await self.session.flush()
        return user

    async def get_by_id(self, user_id: int) -> Optional[UserModel]:
        return await self.session.get(UserModel, user_id)

    async def get_for_update(self, user_id: int) -> Optional[UserModel]:
        result = await self.session.execute(
            select(UserModel)
            .where(UserModel.id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_dispatchable_drivers(
        self, driver_ids: Iterable[int]
    ) -> list[UserModel]:
        """Verified, unblocked drivers among *driver_ids* without an active ride."""
        ids = list(driver_ids)
        if not ids:
            return []
        busy = select(RideModel.driver_id).where(
            RideModel.driver_id.is_not(None),
            RideModel.status.in_(ACTIVE_DRIVER_STATUSES),
        )
        result = await self.session.execute(
            select(UserModel).where(
                UserModel.id.in_(ids),
                UserModel.role == Role.DRIVER,
                UserModel.is_verified.is_(True),
                UserModel.is_blocked.is_(False),
                UserModel.id.not_in(busy),
            )
        )
        return list(result.scalars().all())

    async def nudge_rating(self, user_id: int, increment: float, maximum: float) -> None:
        bumped = UserModel.rating + increment
        await self.session.execute(
            update(UserModel)
            .where(UserModel.id == user_id)
            .values(rating=case((bumped > maximum, maximum), else_=bumped))
            .execution_options(synchronize_session=False)
        )


class RideRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, ride: RideModel) -> RideModel:
        self.session.add(ride)
        await self.session.flush()
        return ride

    async def get_by_id(self, ride_id: int) -> Optional[RideModel]:
        return await self.session.get(RideModel, ride_id)

    async def get_for_update(self, ride_id: int) -> Optional[RideModel]:
        result = await self.session.execute(
            select(RideModel)
            .where(RideModel.id == ride_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_active_for_passenger(self, passenger_id: int) -> Optional[RideModel]:
        result = await self.session.execute(
            select(RideModel)
            .where(
                RideModel.passenger_id == passenger_id,
                RideModel.status.in_(ACTIVE_PASSENGER_STATUSES),
            )
            .order_by(RideModel.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_active_for_driver(self, driver_id: int) -> Optional[RideModel]:
        result = await self.session.execute(
            select(RideModel)
            .where(
                RideModel.driver_id == driver_id,
                RideModel.status.in_(ACTIVE_DRIVER_STATUSES),
            )
            .order_by(RideModel.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_active_for_user(self, user_id: int) -> list[RideModel]:
        result = await self.session.execute(
            select(RideModel)
            .where(
                or_(RideModel.passenger_id == user_id, RideModel.driver_id == user_id),
                RideModel.status.in_(ACTIVE_PASSENGER_STATUSES),
            )
            .order_by(RideModel.created_at.desc(), RideModel.id.desc())
        )
        return list(result.scalars().all())

    async def get_history_for_user(self, user_id: int, limit: int = 50) -> list[RideModel]:
        result = await self.session.execute(
            select(RideModel)
            .where(or_(RideModel.passenger_id == user_id, RideModel.driver_id == user_id))
            .order_by(RideModel.created_at.desc(), RideModel.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())


class ProposalRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def append(self, proposal: NegotiationProposalModel) -> NegotiationProposalModel:
        self.session.add(proposal)
        await self.session.flush()
        return proposal

    async def next_sequence(self, ride_id: int) -> int:
        result = await self.session.execute(
            select(func.max(NegotiationProposalModel.sequence)).where(
                NegotiationProposalModel.ride_id == ride_id
            )
        )
        return (result.scalar() or 0) + 1

    async def get_latest_pending(self, ride_id: int) -> Optional[NegotiationProposalModel]:
        result = await self.session.execute(
            select(NegotiationProposalModel)
            .where(
                NegotiationProposalModel.ride_id == ride_id,
                NegotiationProposalModel.status == ProposalStatus.PENDING,
            )
            .order_by(NegotiationProposalModel.sequence.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_for_ride(self, ride_id: int) -> list[NegotiationProposalModel]:
        result = await self.session.execute(
            select(NegotiationProposalModel)
            .where(NegotiationProposalModel.ride_id == ride_id)
            .order_by(NegotiationProposalModel.sequence)
        )
        return list(result.scalars().all())


class AccountRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, account: AccountModel) -> AccountModel:
        self.session.add(account)
        await self.session.flush()
        return account

    async def get_by_user(self, user_id: int) -> Optional[AccountModel]:
        result = await self.session.execute(
            select(AccountModel).where(AccountModel.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def get_by_user_for_update(self, user_id: int) -> Optional[AccountModel]:
        result = await self.session.execute(
            select(AccountModel)
            .where(AccountModel.user_id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()


class LedgerRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def append(self, entry: LedgerEntryModel) -> LedgerEntryModel:
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def list_for_account(
        self, account_id: int, limit: Optional[int] = None
    ) -> list[LedgerEntryModel]:
        query = (
            select(LedgerEntryModel)
            .where(LedgerEntryModel.account_id == account_id)
            .order_by(LedgerEntryModel.id.desc())
        )
        if limit:
            query = query.limit(limit)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def list_for_reference(self, reference_id: str) -> list[LedgerEntryModel]:
        result = await self.session.execute(
            select(LedgerEntryModel)
            .where(LedgerEntryModel.reference_id == reference_id)
            .order_by(LedgerEntryModel.id)
        )
        return list(result.scalars().all())

    async def sum_for_account(self, account_id: int) -> tuple[Decimal, int]:
        result = await self.session.execute(
            select(
                func.coalesce(func.sum(LedgerEntryModel.amount), 0),
                func.count(LedgerEntryModel.id),
            ).where(LedgerEntryModel.account_id == account_id)
        )
        total, count = result.one()
        return Decimal(str(total)), int(count)
