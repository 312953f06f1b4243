"""
Ports -- the interfaces the booking core consumes.

Adapters live in ``carpool.infrastructure``.  The store's ``commit`` is the
single atomic primitive: it applies a ``RideCommit`` only if the ride's
``version`` and every touched booking's status still match what the caller
read, and bumps the ride version.  New bookings and penalty records in the
plan are inserted in the same transaction.  Callers retry from the read step
when it returns ``False``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Optional

from .entities import Booking, PenaltyRecord, PreferenceProfile, Ride
from .enums import BookingStatus, NotificationKind, RideStatus


@dataclass(frozen=True)
class BookingChange:
    booking_id: str
    expected_status: BookingStatus
    new_status: BookingStatus
    rejection_reason: Optional[str] = None
    responded_at: Optional[datetime] = None


@dataclass
class RideCommit:
    """One conditional write against a ride and its bookings."""

    ride_id: str
    expected_version: int
    seats_remaining: Optional[int] = None
    status: Optional[RideStatus] = None
    booking_changes: list[BookingChange] = field(default_factory=list)
    new_bookings: list[Booking] = field(default_factory=list)
    # Inserted in the same transaction as the ride change
    new_penalties: list[PenaltyRecord] = field(default_factory=list)


class BookingStore(ABC):
    @abstractmethod
    async def get_ride(self, ride_id: str) -> Optional[Ride]: ...

    @abstractmethod
    async def get_booking(self, booking_id: str) -> Optional[Booking]: ...

    @abstractmethod
    async def list_bookings(
        self, ride_id: str, statuses: Optional[Iterable[BookingStatus]] = None
    ) -> list[Booking]: ...

    @abstractmethod
    async def find_booking_for_passenger(
        self,
        ride_id: str,
        passenger_id: str,
        statuses: Iterable[BookingStatus],
    ) -> Optional[Booking]: ...

    @abstractmethod
    async def list_open_rides(
        self,
        *,
        seats_needed: int,
        departing_after: datetime,
        origin_cells: Optional[Iterable[str]] = None,
    ) -> list[Ride]: ...

    @abstractmethod
    async def add_ride(self, ride: Ride) -> Ride: ...

    @abstractmethod
    async def commit(self, plan: RideCommit) -> bool: ...


class Notifier(ABC):
    """Fire-and-forget event dispatch."""

    @abstractmethod
    async def notify(
        self, user_id: str, kind: NotificationKind, payload: dict[str, Any]
    ) -> None: ...


class ProfileLookup(ABC):
    @abstractmethod
    async def get_profiles(
        self, user_ids: Iterable[str]
    ) -> dict[str, PreferenceProfile]: ...


class PenaltyStore(ABC):
    @abstractmethod
    async def list_for_users(self, user_ids: Iterable[str]) -> list[PenaltyRecord]: ...

    @abstractmethod
    async def add(self, record: PenaltyRecord) -> PenaltyRecord: ...

    @abstractmethod
    async def purge_expired(self, now: datetime) -> int: ...

    async def list_for_user(self, user_id: str) -> list[PenaltyRecord]:
        return await self.list_for_users([user_id])
