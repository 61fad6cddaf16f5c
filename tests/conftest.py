"""
Shared test fixtures.

Each test gets its own file-backed SQLite database (via aiosqlite) so tests
run without Docker / PostgreSQL / Redis.  SQLite ignores ``FOR UPDATE``;
serialisation comes from the in-process ``LocalRowLocks`` registry, which
is exactly what a single API process relies on in production as well.

Notifications go to an ``InMemoryNotificationGateway`` and driver presence
runs on a fake clock.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from ridehail.config import Settings
from ridehail.domain.entities import Actor, Location
from ridehail.domain.enums import LedgerCategory, RideStatus, Role
from ridehail.infrastructure.database import Base
from ridehail.infrastructure.locks import LocalRowLocks
from ridehail.infrastructure.models import UserModel
from ridehail.infrastructure.notifications import InMemoryNotificationGateway
from ridehail.infrastructure.presence import PresenceRegistry
from ridehail.services.container import Services, build_services

# Luanda, roughly: pickup in the centre, drop-off near the airport
PICKUP = Location(-8.8390, 13.2894, "Marginal de Luanda")
DROPOFF = Location(-8.8580, 13.2312, "Aeroporto 4 de Fevereiro")


class FakeClock:
    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@dataclass
class Cast:
    passenger: Actor
    passenger2: Actor
    driver1: Actor
    driver2: Actor
    unverified_driver: Actor
    admin: Actor


# ── Fixtures ──────────────────────────────────────────────────────────


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        _env_file=None,
        row_lock_backend="local",
        notifications_backend="memory",
        lock_timeout_seconds=2.0,
    )


@pytest_asyncio.fixture
async def db_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Create tables in a fresh database file, then dispose of the engine."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ridehail.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def presence(clock, test_settings) -> PresenceRegistry:
    return PresenceRegistry(
        stale_after_seconds=test_settings.presence_stale_seconds,
        grace_seconds=test_settings.presence_grace_seconds,
        clock=clock,
    )


@pytest.fixture
def notifier() -> InMemoryNotificationGateway:
    return InMemoryNotificationGateway()


@pytest.fixture
def services(test_settings, session_factory, notifier, presence) -> Services:
    return build_services(
        test_settings,
        session_factory,
        notifier=notifier,
        row_locks=LocalRowLocks(),
        presence=presence,
    )


@pytest_asyncio.fixture
async def cast(session_factory, services) -> Cast:
    """Users with wallet accounts: two passengers, three drivers, one admin."""
    specs = {
        "passenger": ("Ana Costa", Role.PASSENGER, True),
        "passenger2": ("Bruno Neto", Role.PASSENGER, True),
        "driver1": ("Eduardo Lopes", Role.DRIVER, True),
        "driver2": ("Filipa Santos", Role.DRIVER, True),
        "unverified_driver": ("Igor Manuel", Role.DRIVER, False),
        "admin": ("Operations Desk", Role.ADMIN, True),
    }
    actors = {}
    async with session_factory() as session:
        for key, (name, role, verified) in specs.items():
            user = UserModel(
                name=name,
                email=f"{key}@example.com",
                role=role,
                is_verified=verified,
            )
            session.add(user)
            await session.flush()
            actors[key] = Actor(id=user.id, role=role)
        await session.commit()

    for actor in actors.values():
        await services.ledger.open_account(actor.id)
    return Cast(**actors)


@pytest.fixture
def fund(services, cast):
    async def _fund(actor: Actor, amount: str) -> None:
        await services.ledger.adjust(
            cast.admin, actor.id, Decimal(amount), LedgerCategory.ADJUSTMENT, "Top-up"
        )

    return _fund


@pytest.fixture
def make_ride(services, cast):
    """Drive a fresh ride from request up to *status* through the engines."""

    async def _make_ride(
        status: RideStatus = RideStatus.SEARCHING,
        price: str = "1500",
        passenger: Actor = None,
        driver: Actor = None,
    ):
        passenger = passenger or cast.passenger
        driver = driver or cast.driver1
        outcome = await services.dispatch.request_ride(
            passenger, PICKUP, DROPOFF, price_offer=Decimal(price), distance_km=4.0
        )
        ride = outcome.ride
        if status is RideStatus.SEARCHING:
            return ride
        ride = await services.dispatch.accept_ride(driver, ride.id)
        for step in (RideStatus.ARRIVED, RideStatus.STARTED):
            if status is RideStatus.ACCEPTED:
                break
            ride = await services.dispatch.update_status(driver, ride.id, step)
            if status is step:
                break
        return ride

    return _make_ride
