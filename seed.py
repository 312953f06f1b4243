"""
Seed script -- populates the database with sample data for reviewers.

Run after migrations:
    python seed.py

Creates:
  - 8 sample students with gender / matching preferences
  - 5 ride offers from the TARC Setapak campus around Kuala Lumpur
  - a few pending and accepted bookings, priced by the fare calculator
"""

import asyncio
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import text

from carpool.config import settings
from carpool.domain.entities import Location
from carpool.domain.enums import (
    DriverGenderPreference,
    Gender,
    PassengerGenderPreference,
)
from carpool.domain.ledger import BookingLedger
from carpool.domain.penalties import PenaltyGuard
from carpool.infrastructure.database import async_session_factory, engine
from carpool.infrastructure.models import UserModel
from carpool.infrastructure.notifications import LoggingNotifier
from carpool.infrastructure.stores import SqlBookingStore, SqlPenaltyStore

CAMPUS = Location(3.2167, 101.7333, "TARC KL, Setapak")
KLCC = Location(3.1478, 101.6953, "KLCC")
MID_VALLEY = Location(3.1184, 101.6768, "Mid Valley")
BANGSAR = Location(3.1337, 101.6856, "KL Sentral")
WANGSA_MAJU = Location(3.2050, 101.7370, "Wangsa Maju LRT")

USERS = [
    ("Aisyah Rahman", "aisyah@example.com", Gender.FEMALE, PassengerGenderPreference.FEMALE_ONLY, DriverGenderPreference.WOMEN_NON_BINARY_ONLY),
    ("Jason Lim", "jason@example.com", Gender.MALE, PassengerGenderPreference.NO_PREFERENCE, DriverGenderPreference.NO_PREFERENCE),
    ("Priya Nair", "priya@example.com", Gender.FEMALE, PassengerGenderPreference.NO_PREFERENCE, DriverGenderPreference.NO_PREFERENCE),
    ("Hafiz Ismail", "hafiz@example.com", Gender.MALE, PassengerGenderPreference.SAME_GENDER_ONLY, DriverGenderPreference.NO_PREFERENCE),
    ("Mei Ling Tan", "meiling@example.com", Gender.FEMALE, PassengerGenderPreference.NO_PREFERENCE, DriverGenderPreference.NO_PREFERENCE),
    ("Alex Wong", "alex@example.com", Gender.NON_BINARY, PassengerGenderPreference.NO_PREFERENCE, DriverGenderPreference.NO_PREFERENCE),
    ("Daniel Raj", "daniel@example.com", Gender.PREFER_NOT_TO_SAY, PassengerGenderPreference.NO_PREFERENCE, DriverGenderPreference.NO_PREFERENCE),
    ("Nurul Huda", "nurul@example.com", None, PassengerGenderPreference.NO_PREFERENCE, DriverGenderPreference.NO_PREFERENCE),
]

# (driver index, destination, hours from now, seats, price per seat)
RIDES = [
    (0, KLCC, 3, 3, Decimal("6.00")),
    (1, MID_VALLEY, 5, 4, Decimal("8.50")),
    (2, BANGSAR, 26, 2, Decimal("7.00")),
    (4, WANGSA_MAJU, 1, 3, Decimal("0.00")),
    (1, KLCC, 30, 4, Decimal("6.50")),
]


async def seed():
    async with async_session_factory() as session:
        # Check if already seeded
        result = await session.execute(text("SELECT count(*) FROM users"))
        if result.scalar() > 0:
            print("Database already seeded. Skipping.")
            return

        # ── Users ─────────────────────────────────────────────────────
        user_models = []
        for name, email, gender, passenger_pref, driver_pref in USERS:
            m = UserModel(
                id=str(uuid.uuid4()),
                name=name,
                email=email,
                gender=gender,
                passenger_preference=passenger_pref,
                driver_preference=driver_pref,
            )
            session.add(m)
            user_models.append(m)
        await session.commit()
        print(f"  Created {len(user_models)} users")

    ledger = BookingLedger.from_settings(
        settings,
        SqlBookingStore(async_session_factory),
        LoggingNotifier(),
        PenaltyGuard(SqlPenaltyStore(async_session_factory)),
    )
    now = datetime.now(timezone.utc)

    # ── Rides ─────────────────────────────────────────────────────────
    rides = []
    for driver, destination, hours, seats, price in RIDES:
        rides.append(
            await ledger.create_ride(
                driver_id=user_models[driver].id,
                origin=CAMPUS,
                destination=destination,
                scheduled_at=now + timedelta(hours=hours),
                seats_total=seats,
                price_per_seat=price,
            )
        )
    print(f"  Created {len(rides)} rides")

    # ── Bookings ──────────────────────────────────────────────────────
    b1 = await ledger.request_booking(rides[0].id, user_models[2].id, 1)
    await ledger.request_booking(rides[0].id, user_models[4].id, 2)
    b3 = await ledger.request_booking(rides[1].id, user_models[3].id, 2)
    await ledger.request_booking(rides[1].id, user_models[5].id, 1)
    await ledger.request_booking(rides[3].id, user_models[6].id, 1)
    await ledger.accept_booking(b1.id)
    await ledger.accept_booking(b3.id)
    print("  Created 5 bookings (2 accepted)")

    print("\nSeed complete!")


async def main():
    print("Seeding database...")
    await seed()
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
