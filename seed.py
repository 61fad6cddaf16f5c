"""
Seed script -- populates the database with sample data for reviewers.

Run after migrations:
    alembic upgrade head
    python seed.py

Creates:
  - 1 administrator
  - 4 passengers and 5 drivers (4 verified, 1 awaiting verification)
  - one wallet account per user
  - opening wallet balances, booked as administrative adjustments so that
    every balance is backed by ledger entries
"""

import asyncio
from decimal import Decimal

from sqlalchemy import text

from ridehail.config import settings
from ridehail.domain.entities import Actor
from ridehail.domain.enums import LedgerCategory, Role
from ridehail.infrastructure.database import async_session_factory, engine
from ridehail.infrastructure.locks import LocalRowLocks
from ridehail.infrastructure.models import UserModel
from ridehail.infrastructure.notifications import InMemoryNotificationGateway
from ridehail.services.container import build_services

ADMIN = {"name": "Operations Desk", "email": "ops@example.com"}

PASSENGERS = [
    {"name": "Ana Costa", "email": "ana@example.com", "opening": "25000"},
    {"name": "Bruno Neto", "email": "bruno@example.com", "opening": "5000"},
    {"name": "Carla Mendes", "email": "carla@example.com", "opening": "500"},
    {"name": "Domingos Silva", "email": "domingos@example.com", "opening": "0"},
]

DRIVERS = [
    {"name": "Eduardo Lopes", "email": "eduardo@example.com", "verified": True, "rating": 4.8},
    {"name": "Filipa Santos", "email": "filipa@example.com", "verified": True, "rating": 4.6},
    {"name": "Gaspar Tavares", "email": "gaspar@example.com", "verified": True, "rating": 4.9},
    {"name": "Helena Pinto", "email": "helena@example.com", "verified": True, "rating": 4.5},
    {"name": "Igor Manuel", "email": "igor@example.com", "verified": False, "rating": 4.5},
]


async def seed():
    async with async_session_factory() as session:
        # Check if already seeded
        result = await session.execute(text("SELECT count(*) FROM users"))
        if result.scalar() > 0:
            print("Database already seeded. Skipping.")
            return

        # ── Users ─────────────────────────────────────────────────────
        admin = UserModel(
            name=ADMIN["name"], email=ADMIN["email"], role=Role.ADMIN, is_verified=True
        )
        session.add(admin)
        passengers = []
        for p in PASSENGERS:
            m = UserModel(name=p["name"], email=p["email"], role=Role.PASSENGER)
            session.add(m)
            passengers.append((m, Decimal(p["opening"])))
        drivers = []
        for d in DRIVERS:
            m = UserModel(
                name=d["name"],
                email=d["email"],
                role=Role.DRIVER,
                is_verified=d["verified"],
                rating=d["rating"],
            )
            session.add(m)
            drivers.append(m)
        await session.commit()
        print(f"  Created {1 + len(passengers) + len(drivers)} users")

    # ── Accounts and opening balances ─────────────────────────────────
    services = build_services(
        settings,
        async_session_factory,
        notifier=InMemoryNotificationGateway(),
        row_locks=LocalRowLocks(),
    )
    operator = Actor(id=admin.id, role=Role.ADMIN)
    for user in [admin, *drivers, *(p for p, _ in passengers)]:
        await services.ledger.open_account(user.id)
    print(f"  Opened {1 + len(passengers) + len(drivers)} wallet accounts")

    funded = 0
    for user, opening in passengers:
        if opening > 0:
            await services.ledger.adjust(
                operator, user.id, opening, LedgerCategory.ADJUSTMENT, "Opening balance"
            )
            funded += 1
    print(f"  Funded {funded} passenger wallets")
    print("\nSeed complete!")


async def main():
    print("Seeding database...")
    await seed()
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
