"""
FastAPI dependency injection helpers.

Each port gets its own provider so tests can swap in the in-memory
adapters with ``app.dependency_overrides``.
"""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from carpool.config import settings
from carpool.domain.ledger import BookingLedger
from carpool.domain.penalties import PenaltyGuard
from carpool.domain.ports import BookingStore, Notifier, PenaltyStore, ProfileLookup
from carpool.domain.pricing import FareCalculator
from carpool.domain.search import RideSearch
from carpool.infrastructure.database import async_session_factory
from carpool.infrastructure.notifications import RedisNotifier
from carpool.infrastructure.redis_client import get_redis
from carpool.infrastructure.stores import (
    SqlBookingStore,
    SqlPenaltyStore,
    SqlProfileLookup,
)


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return async_session_factory


def get_booking_store(
    factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> BookingStore:
    return SqlBookingStore(factory)


def get_penalty_store(
    factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> PenaltyStore:
    return SqlPenaltyStore(factory)


def get_profile_lookup(
    factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> ProfileLookup:
    return SqlProfileLookup(factory)


def get_notifier() -> Notifier:
    return RedisNotifier(get_redis)


def get_penalty_guard(store: PenaltyStore = Depends(get_penalty_store)) -> PenaltyGuard:
    return PenaltyGuard(store)


def get_fare_calculator() -> FareCalculator:
    return FareCalculator.from_settings(settings)


def get_ledger(
    store: BookingStore = Depends(get_booking_store),
    notifier: Notifier = Depends(get_notifier),
    guard: PenaltyGuard = Depends(get_penalty_guard),
) -> BookingLedger:
    return BookingLedger.from_settings(settings, store, notifier, guard)


def get_ride_search(
    store: BookingStore = Depends(get_booking_store),
    profiles: ProfileLookup = Depends(get_profile_lookup),
    guard: PenaltyGuard = Depends(get_penalty_guard),
) -> RideSearch:
    return RideSearch.from_settings(settings, store, profiles, guard)
