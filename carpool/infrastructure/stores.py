"""
SQLAlchemy adapters for the booking core's ports.

Every call opens its own short session from the supplied factory so a
retried ledger command always re-reads committed state.  Constraint
violations (a booking or ride naming a user that does not exist) surface
as ``NotFound`` / ``InvalidInput``, never as raw driver errors.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .repositories import (
    BookingRepository,
    PenaltyRepository,
    RideRepository,
    UserRepository,
    booking_from_model,
    booking_to_model,
    penalty_from_model,
    penalty_to_model,
    profile_from_model,
    ride_from_model,
    ride_to_model,
)
from carpool.domain.entities import (
    Booking,
    PenaltyRecord,
    PreferenceProfile,
    Ride,
    as_utc,
)
from carpool.domain.enums import BookingStatus
from carpool.domain.exceptions import CarpoolError, InvalidInput, NotFound
from carpool.domain.ports import (
    BookingStore,
    PenaltyStore,
    ProfileLookup,
    RideCommit,
)

logger = logging.getLogger(__name__)


class _StaleWrite(Exception):
    """A conditional update matched no row; the transaction is rolled back."""


async def _rejected_write(
    session_factory: async_sessionmaker[AsyncSession],
    exc: IntegrityError,
    user_ids: Iterable[str],
) -> CarpoolError:
    """Translate a constraint violation, naming any referenced user that is missing."""
    wanted = set(user_ids)
    async with session_factory() as session:
        known = {u.id for u in await UserRepository(session).get_many(wanted)}
    missing = sorted(wanted - known)
    if missing:
        return NotFound(f"Unknown user(s): {', '.join(missing)}")
    logger.warning("Write rejected by a database constraint: %s", exc.orig)
    return InvalidInput(f"Write rejected by a database constraint: {exc.orig}")


class SqlBookingStore(BookingStore):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def get_ride(self, ride_id: str) -> Optional[Ride]:
        async with self.session_factory() as session:
            model = await RideRepository(session).get_by_id(ride_id)
            return ride_from_model(model) if model else None

    async def get_booking(self, booking_id: str) -> Optional[Booking]:
        async with self.session_factory() as session:
            model = await BookingRepository(session).get_by_id(booking_id)
            return booking_from_model(model) if model else None

    async def list_bookings(
        self, ride_id: str, statuses: Optional[Iterable[BookingStatus]] = None
    ) -> list[Booking]:
        async with self.session_factory() as session:
            models = await BookingRepository(session).list_for_ride(ride_id, statuses)
            return [booking_from_model(m) for m in models]

    async def find_booking_for_passenger(
        self, ride_id: str, passenger_id: str, statuses: Iterable[BookingStatus]
    ) -> Optional[Booking]:
        async with self.session_factory() as session:
            model = await BookingRepository(session).find_for_passenger(
                ride_id, passenger_id, statuses
            )
            return booking_from_model(model) if model else None

    async def list_open_rides(
        self,
        *,
        seats_needed: int,
        departing_after: datetime,
        origin_cells: Optional[Iterable[str]] = None,
    ) -> list[Ride]:
        async with self.session_factory() as session:
            models = await RideRepository(session).list_open(
                seats_needed=seats_needed,
                departing_after=departing_after,
                origin_cells=origin_cells,
            )
            return [ride_from_model(m) for m in models]

    async def add_ride(self, ride: Ride) -> Ride:
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    await RideRepository(session).add(ride_to_model(ride))
        except IntegrityError as exc:
            raise await _rejected_write(
                self.session_factory, exc, [ride.driver_id]
            ) from exc
        return ride

    async def commit(self, plan: RideCommit) -> bool:
        values: dict = {"version": plan.expected_version + 1}
        if plan.seats_remaining is not None:
            values["seats_remaining"] = plan.seats_remaining
        if plan.status is not None:
            values["status"] = plan.status

        try:
            async with self.session_factory() as session:
                async with session.begin():
                    if not await RideRepository(session).conditional_update(
                        plan.ride_id, plan.expected_version, values
                    ):
                        raise _StaleWrite(plan.ride_id)

                    bookings = BookingRepository(session)
                    for change in plan.booking_changes:
                        booking_values = {"status": change.new_status}
                        if change.rejection_reason is not None:
                            booking_values["rejection_reason"] = change.rejection_reason
                        if change.responded_at is not None:
                            booking_values["responded_at"] = as_utc(change.responded_at)
                        if not await bookings.conditional_update(
                            change.booking_id, change.expected_status, booking_values
                        ):
                            raise _StaleWrite(change.booking_id)

                    for booking in plan.new_bookings:
                        bookings.add(booking_to_model(booking))

                    penalties = PenaltyRepository(session)
                    for record in plan.new_penalties:
                        await penalties.add(penalty_to_model(record))
        except _StaleWrite as exc:
            logger.debug("Conditional write lost on %s", exc)
            return False
        except IntegrityError as exc:
            referenced = [b.passenger_id for b in plan.new_bookings]
            referenced += [p.user_id for p in plan.new_penalties]
            raise await _rejected_write(self.session_factory, exc, referenced) from exc
        return True


class SqlProfileLookup(ProfileLookup):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def get_profiles(
        self, user_ids: Iterable[str]
    ) -> dict[str, PreferenceProfile]:
        async with self.session_factory() as session:
            users = await UserRepository(session).get_many(user_ids)
            return {u.id: profile_from_model(u) for u in users}


class SqlPenaltyStore(PenaltyStore):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def list_for_users(self, user_ids: Iterable[str]) -> list[PenaltyRecord]:
        async with self.session_factory() as session:
            models = await PenaltyRepository(session).list_for_users(user_ids)
            return [penalty_from_model(m) for m in models]

    async def add(self, record: PenaltyRecord) -> PenaltyRecord:
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    await PenaltyRepository(session).add(penalty_to_model(record))
        except IntegrityError as exc:
            raise await _rejected_write(
                self.session_factory, exc, [record.user_id]
            ) from exc
        return record

    async def purge_expired(self, now: datetime) -> int:
        async with self.session_factory() as session:
            async with session.begin():
                return await PenaltyRepository(session).delete_expired(now)
