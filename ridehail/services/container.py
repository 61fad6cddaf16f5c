"""Wires storage, notifications and presence into the engines."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import redis.asyncio as aioredis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ridehail.config import Settings
from ridehail.infrastructure.locks import LocalRowLocks, RedisRowLocks, RowLocks
from ridehail.infrastructure.notifications import (
    InMemoryNotificationGateway,
    NotificationGateway,
    RedisNotificationGateway,
    SafeGateway,
)
from ridehail.infrastructure.presence import PresenceRegistry
from ridehail.infrastructure.uow import Storage
from ridehail.services.dispatch import DispatchEngine
from ridehail.services.ledger import LedgerService
from ridehail.services.negotiation import NegotiationEngine
from ridehail.services.settlement import SettlementEngine


@dataclass
class Services:
    storage: Storage
    notifier: NotificationGateway
    presence: PresenceRegistry
    dispatch: DispatchEngine
    negotiation: NegotiationEngine
    settlement: SettlementEngine
    ledger: LedgerService
    settings: Settings


def build_services(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    redis: Optional[aioredis.Redis] = None,
    notifier: Optional[NotificationGateway] = None,
    row_locks: Optional[RowLocks] = None,
    presence: Optional[PresenceRegistry] = None,
) -> Services:
    if row_locks is None:
        if settings.row_lock_backend == "redis":
            row_locks = RedisRowLocks(redis, ttl_seconds=settings.lock_ttl_seconds)
        else:
            row_locks = LocalRowLocks()

    if notifier is None:
        if settings.notifications_backend == "redis":
            notifier = RedisNotificationGateway(redis)
        else:
            notifier = InMemoryNotificationGateway()
    notifier = SafeGateway(notifier)

    if presence is None:
        presence = PresenceRegistry(
            stale_after_seconds=settings.presence_stale_seconds,
            grace_seconds=settings.presence_grace_seconds,
        )

    storage = Storage(session_factory, row_locks, lock_timeout=settings.lock_timeout_seconds)
    ledger = LedgerService(storage, notifier, settings)
    return Services(
        storage=storage,
        notifier=notifier,
        presence=presence,
        dispatch=DispatchEngine(storage, notifier, presence, settings),
        negotiation=NegotiationEngine(storage, notifier, settings),
        settlement=SettlementEngine(storage, notifier, ledger, settings),
        ledger=ledger,
        settings=settings,
    )
