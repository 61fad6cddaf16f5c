"""
Unit of work: one transaction plus the row locks that guard it.

    async with storage.unit_of_work() as uow:
        await uow.lock(row_key("rides", ride_id))
        ride = await uow.rides.get_for_update(ride_id)
        ...

Locks are taken before the guarded row is read and released only after the
transaction has committed or rolled back, so there is never a
lock-unlock-write gap.  Keys passed to one ``lock`` call are acquired in
sorted order; engines lock users before rides and rides before accounts.

Storage and connectivity failures are logged with context and re-raised as
``Unavailable`` (retryable).  Domain errors roll the transaction back and
propagate unchanged.
"""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack
from typing import Optional

from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .locks import RowLocks
from .repositories import (
    AccountRepository,
    LedgerRepository,
    ProposalRepository,
    RideRepository,
    UserRepository,
)
from ridehail.domain.errors import Unavailable

logger = logging.getLogger(__name__)

STORAGE_ERRORS = (SQLAlchemyError, RedisError, OSError)


class UnitOfWork:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        row_locks: RowLocks,
        lock_timeout: float,
        label: str = "",
    ):
        self._session_factory = session_factory
        self._row_locks = row_locks
        self._lock_timeout = lock_timeout
        self._label = label
        self._stack = AsyncExitStack()
        self._held: set[str] = set()
        self.session: Optional[AsyncSession] = None

    async def __aenter__(self) -> "UnitOfWork":
        await self._stack.__aenter__()
        self.session = await self._stack.enter_async_context(self._session_factory())
        self.users = UserRepository(self.session)
        self.rides = RideRepository(self.session)
        self.proposals = ProposalRepository(self.session)
        self.accounts = AccountRepository(self.session)
        self.ledger = LedgerRepository(self.session)
        return self

    async def lock(self, *keys: str) -> None:
        """Take the row locks for *keys* (sorted) and keep them until exit."""
        first = not self._held
        for key in sorted(set(keys) - self._held):
            await self._stack.enter_async_context(
                self._row_locks.hold(key, self._lock_timeout)
            )
            self._held.add(key)
        if first and self._held:
            await self._set_db_lock_timeout()

    async def _set_db_lock_timeout(self) -> None:
        if self.session.bind.dialect.name == "postgresql":
            millis = int(self._lock_timeout * 1000)
            await self.session.execute(text(f"SET LOCAL lock_timeout = {millis}"))

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        try:
            if exc_type is None:
                await self.session.commit()
            else:
                await self.session.rollback()
        except STORAGE_ERRORS as err:
            logger.exception("Storage failure finishing unit of work %s", self._label)
            await self._stack.aclose()
            raise Unavailable("Storage is temporarily unavailable, retry") from err
        await self._stack.aclose()

        if exc is not None and isinstance(exc, STORAGE_ERRORS):
            logger.error(
                "Storage failure in unit of work %s", self._label, exc_info=exc
            )
            raise Unavailable("Storage is temporarily unavailable, retry") from exc
        return False


class Storage:
    """Factory for units of work sharing one session factory and lock registry."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        row_locks: RowLocks,
        lock_timeout: float = 5.0,
    ):
        self.session_factory = session_factory
        self.row_locks = row_locks
        self.lock_timeout = lock_timeout

    def unit_of_work(self, label: str = "") -> UnitOfWork:
        return UnitOfWork(
            self.session_factory, self.row_locks, self.lock_timeout, label=label
        )


