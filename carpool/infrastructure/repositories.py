"""
Repository Pattern -- abstracts DB access so domain logic stays DB-agnostic.

Each repository receives an ``AsyncSession`` (unit-of-work) and exposes
domain-relevant queries only.  The ``conditional_update`` methods are the
compare-and-set primitives behind ``SqlBookingStore.commit``: they return
``False`` when the row no longer matches what the caller read.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import BookingModel, PenaltyModel, RideModel, UserModel
from carpool.domain.entities import (
    Booking,
    Location,
    PenaltyRecord,
    PreferenceProfile,
    Ride,
    as_utc,
)
from carpool.domain.enums import OPEN_RIDE_STATUSES, BookingStatus


# ── Mapping ───────────────────────────────────────────────────────────


def ride_from_model(m: RideModel) -> Ride:
    return Ride(
        id=m.id,
        driver_id=m.driver_id,
        origin=Location(m.origin_lat, m.origin_lng, m.origin_name or ""),
        destination=Location(
            m.destination_lat, m.destination_lng, m.destination_name or ""
        ),
        scheduled_at=as_utc(m.scheduled_at),
        seats_total=m.seats_total,
        seats_remaining=m.seats_remaining,
        price_per_seat=Decimal(m.price_per_seat or 0),
        status=m.status,
        gender_preference=m.gender_preference,
        origin_cell=m.origin_cell,
        version=m.version,
        created_at=as_utc(m.created_at),
    )


def ride_to_model(ride: Ride) -> RideModel:
    return RideModel(
        id=ride.id,
        driver_id=ride.driver_id,
        origin_lat=ride.origin.latitude,
        origin_lng=ride.origin.longitude,
        origin_name=ride.origin.name,
        destination_lat=ride.destination.latitude,
        destination_lng=ride.destination.longitude,
        destination_name=ride.destination.name,
        origin_cell=ride.origin_cell,
        scheduled_at=as_utc(ride.scheduled_at),
        seats_total=ride.seats_total,
        seats_remaining=ride.seats_remaining,
        price_per_seat=ride.price_per_seat,
        status=ride.status,
        gender_preference=ride.gender_preference,
        version=ride.version,
    )


def booking_from_model(m: BookingModel) -> Booking:
    return Booking(
        id=m.id,
        ride_id=m.ride_id,
        passenger_id=m.passenger_id,
        seats_requested=m.seats_requested,
        fare_per_seat=Decimal(m.fare_per_seat),
        status=m.status,
        rejection_reason=m.rejection_reason,
        payment_status=m.payment_status,
        requested_at=as_utc(m.requested_at),
        responded_at=as_utc(m.responded_at),
    )


def booking_to_model(booking: Booking) -> BookingModel:
    return BookingModel(
        id=booking.id,
        ride_id=booking.ride_id,
        passenger_id=booking.passenger_id,
        seats_requested=booking.seats_requested,
        fare_per_seat=booking.fare_per_seat,
        status=booking.status,
        rejection_reason=booking.rejection_reason,
        payment_status=booking.payment_status,
        requested_at=as_utc(booking.requested_at),
        responded_at=as_utc(booking.responded_at),
    )


def penalty_from_model(m: PenaltyModel) -> PenaltyRecord:
    return PenaltyRecord(
        id=m.id,
        user_id=m.user_id,
        reason=m.reason,
        expires_at=as_utc(m.expires_at),
        kind=m.kind,
        ride_id=m.ride_id,
        created_at=as_utc(m.created_at),
    )


def penalty_to_model(record: PenaltyRecord) -> PenaltyModel:
    model = PenaltyModel(
        id=record.id,
        user_id=record.user_id,
        kind=record.kind,
        reason=record.reason,
        ride_id=record.ride_id,
        expires_at=as_utc(record.expires_at),
    )
    # Left unset, the column falls back to its server default
    if record.created_at is not None:
        model.created_at = as_utc(record.created_at)
    return model


def profile_from_model(m: UserModel) -> PreferenceProfile:
    return PreferenceProfile(
        user_id=m.id,
        gender=m.gender,
        passenger_preference=m.passenger_preference,
        driver_preference=m.driver_preference,
    )


# ── Repositories ──────────────────────────────────────────────────────


class RideRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, ride: RideModel) -> RideModel:
        self.session.add(ride)
        await self.session.flush()
        return ride

    async def get_by_id(self, ride_id: str) -> Optional[RideModel]:
        return await self.session.get(RideModel, ride_id)

    async def list_open(
        self,
        *,
        seats_needed: int,
        departing_after: datetime,
        origin_cells: Optional[Iterable[str]] = None,
    ) -> list[RideModel]:
        query = (
            select(RideModel)
            .where(RideModel.status.in_(list(OPEN_RIDE_STATUSES)))
            .where(RideModel.seats_remaining >= seats_needed)
            .where(RideModel.scheduled_at >= as_utc(departing_after))
            .order_by(RideModel.scheduled_at)
        )
        if origin_cells is not None:
            query = query.where(RideModel.origin_cell.in_(list(origin_cells)))
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def conditional_update(
        self, ride_id: str, expected_version: int, values: dict[str, Any]
    ) -> bool:
        """UPDATE ... WHERE version = expected.  True iff the row matched."""
        result = await self.session.execute(
            update(RideModel)
            .where(RideModel.id == ride_id, RideModel.version == expected_version)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


class BookingRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    def add(self, booking: BookingModel) -> None:
        self.session.add(booking)

    async def get_by_id(self, booking_id: str) -> Optional[BookingModel]:
        return await self.session.get(BookingModel, booking_id)

    async def list_for_ride(
        self, ride_id: str, statuses: Optional[Iterable[BookingStatus]] = None
    ) -> list[BookingModel]:
        query = select(BookingModel).where(BookingModel.ride_id == ride_id)
        if statuses is not None:
            query = query.where(BookingModel.status.in_(list(statuses)))
        result = await self.session.execute(query.order_by(BookingModel.requested_at))
        return list(result.scalars().all())

    async def find_for_passenger(
        self, ride_id: str, passenger_id: str, statuses: Iterable[BookingStatus]
    ) -> Optional[BookingModel]:
        result = await self.session.execute(
            select(BookingModel)
            .where(
                BookingModel.ride_id == ride_id,
                BookingModel.passenger_id == passenger_id,
                BookingModel.status.in_(list(statuses)),
            )
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def conditional_update(
        self, booking_id: str, expected_status: BookingStatus, values: dict[str, Any]
    ) -> bool:
        result = await self.session.execute(
            update(BookingModel)
            .where(
                BookingModel.id == booking_id,
                BookingModel.status == expected_status,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


class UserRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, user_id: str) -> Optional[UserModel]:
        return await self.session.get(UserModel, user_id)

    async def get_many(self, user_ids: Iterable[str]) -> list[UserModel]:
        ids = list(user_ids)
        if not ids:
            return []
        result = await self.session.execute(
            select(UserModel).where(UserModel.id.in_(ids))
        )
        return list(result.scalars().all())


class PenaltyRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, penalty: PenaltyModel) -> PenaltyModel:
        self.session.add(penalty)
        await self.session.flush()
        return penalty

    async def list_for_users(self, user_ids: Iterable[str]) -> list[PenaltyModel]:
        ids = list(user_ids)
        if not ids:
            return []
        result = await self.session.execute(
            select(PenaltyModel).where(PenaltyModel.user_id.in_(ids))
        )
        return list(result.scalars().all())

    async def delete_expired(self, now: datetime) -> int:
        result = await self.session.execute(
            delete(PenaltyModel).where(PenaltyModel.expires_at <= as_utc(now))
        )
        return result.rowcount or 0
