"""
Shared test fixtures.

Ledger and API tests run against the in-memory adapters; store tests use
an in-memory SQLite database (via aiosqlite) so nothing needs Docker,
PostgreSQL or Redis.
"""

from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from carpool.domain.entities import Location, PreferenceProfile
from carpool.domain.enums import Gender
from carpool.domain.ledger import BookingLedger
from carpool.domain.penalties import PenaltyGuard
from carpool.domain.ports import Notifier
from carpool.infrastructure.database import init_db
from carpool.infrastructure.memory import (
    InMemoryBookingStore,
    InMemoryPenaltyStore,
    InMemoryProfileLookup,
)

# 10:00 in Kuala Lumpur, outside both peak windows
NOW = datetime(2026, 3, 2, 2, 0, tzinfo=timezone.utc)

CAMPUS = Location(3.2167, 101.7333, "TARC KL")
KLCC = Location(3.1478, 101.6953, "KLCC")

DRIVER = "driver-1"


class RecordingNotifier(Notifier):
    def __init__(self):
        self.sent = []

    async def notify(self, user_id, kind, payload):
        self.sent.append((user_id, kind, payload))

    def kinds_for(self, user_id):
        return [kind for uid, kind, _ in self.sent if uid == user_id]


# ── In-memory wiring ──────────────────────────────────────────────────


@pytest.fixture
def store(penalty_store) -> InMemoryBookingStore:
    return InMemoryBookingStore(penalty_store)


@pytest.fixture
def penalty_store() -> InMemoryPenaltyStore:
    return InMemoryPenaltyStore()


@pytest.fixture
def profiles() -> InMemoryProfileLookup:
    return InMemoryProfileLookup(
        [PreferenceProfile(user_id=DRIVER, gender=Gender.MALE)]
    )


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def guard(penalty_store) -> PenaltyGuard:
    return PenaltyGuard(penalty_store)


@pytest.fixture
def ledger(store, notifier, guard) -> BookingLedger:
    return BookingLedger(store, notifier, guard, clock=lambda: NOW)


@pytest.fixture
def offer_ride(ledger):
    """Create a ride departing campus for KLCC three hours from ``NOW``."""

    async def _offer(seats=4, driver_id=DRIVER, hours=3, **kwargs):
        return await ledger.create_ride(
            driver_id=driver_id,
            origin=kwargs.pop("origin", CAMPUS),
            destination=kwargs.pop("destination", KLCC),
            scheduled_at=NOW + timedelta(hours=hours),
            seats_total=seats,
            **kwargs,
        )

    return _offer


# ── SQLite ────────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def sql_session_factory() -> AsyncGenerator[async_sessionmaker, None]:
    """Fresh in-memory schema per test; one shared connection."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await init_db(engine)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()
