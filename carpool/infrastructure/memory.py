"""
In-process adapters for the booking core's ports.

Used by the test-suite and for running the API without PostgreSQL.  State
is held in plain dicts; every read hands out a copy so callers can never
mutate stored rows behind the store's back.  ``commit`` is guarded by an
``asyncio.Lock`` and reads yield to the event loop, so concurrent ledger
commands interleave the way they would against a real database.
"""

from __future__ import annotations

import asyncio
from copy import deepcopy
from dataclasses import replace
from datetime import datetime, timezone
from typing import Iterable, Optional

from carpool.domain.entities import (
    Booking,
    PenaltyRecord,
    PreferenceProfile,
    Ride,
    as_utc,
)
from carpool.domain.enums import BookingStatus
from carpool.domain.ports import (
    BookingStore,
    PenaltyStore,
    ProfileLookup,
    RideCommit,
)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class InMemoryBookingStore(BookingStore):
    """
    Penalty records committed with a ride change land in ``penalties``;
    pass the same ``InMemoryPenaltyStore`` the guard reads from.
    """

    def __init__(self, penalties: Optional[InMemoryPenaltyStore] = None):
        self.rides: dict[str, Ride] = {}
        self.bookings: dict[str, Booking] = {}
        self.penalties = penalties if penalties is not None else InMemoryPenaltyStore()
        self.commits = 0
        self.rejected_commits = 0
        self._lock = asyncio.Lock()

    async def get_ride(self, ride_id: str) -> Optional[Ride]:
        await asyncio.sleep(0)
        ride = self.rides.get(ride_id)
        return deepcopy(ride) if ride else None

    async def get_booking(self, booking_id: str) -> Optional[Booking]:
        await asyncio.sleep(0)
        booking = self.bookings.get(booking_id)
        return deepcopy(booking) if booking else None

    async def list_bookings(
        self, ride_id: str, statuses: Optional[Iterable[BookingStatus]] = None
    ) -> list[Booking]:
        await asyncio.sleep(0)
        wanted = set(statuses) if statuses is not None else None
        found = [
            deepcopy(b)
            for b in self.bookings.values()
            if b.ride_id == ride_id and (wanted is None or b.status in wanted)
        ]
        return sorted(found, key=lambda b: b.requested_at or _EPOCH)

    async def find_booking_for_passenger(
        self, ride_id: str, passenger_id: str, statuses: Iterable[BookingStatus]
    ) -> Optional[Booking]:
        wanted = set(statuses)
        for booking in await self.list_bookings(ride_id, wanted):
            if booking.passenger_id == passenger_id:
                return booking
        return None

    async def list_open_rides(
        self,
        *,
        seats_needed: int,
        departing_after: datetime,
        origin_cells: Optional[Iterable[str]] = None,
    ) -> list[Ride]:
        await asyncio.sleep(0)
        cells = set(origin_cells) if origin_cells is not None else None
        after = as_utc(departing_after)
        rides = [
            deepcopy(r)
            for r in self.rides.values()
            if r.is_open
            and r.seats_remaining >= seats_needed
            and as_utc(r.scheduled_at) >= after
            and (cells is None or r.origin_cell in cells)
        ]
        return sorted(rides, key=lambda r: as_utc(r.scheduled_at))

    async def add_ride(self, ride: Ride) -> Ride:
        async with self._lock:
            self.rides[ride.id] = deepcopy(ride)
        return ride

    async def commit(self, plan: RideCommit) -> bool:
        async with self._lock:
            ride = self.rides.get(plan.ride_id)
            if ride is None or ride.version != plan.expected_version:
                self.rejected_commits += 1
                return False
            for change in plan.booking_changes:
                current = self.bookings.get(change.booking_id)
                if current is None or current.status != change.expected_status:
                    self.rejected_commits += 1
                    return False

            values: dict = {"version": ride.version + 1}
            if plan.seats_remaining is not None:
                values["seats_remaining"] = plan.seats_remaining
            if plan.status is not None:
                values["status"] = plan.status
            self.rides[ride.id] = replace(ride, **values)

            for change in plan.booking_changes:
                current = self.bookings[change.booking_id]
                updates: dict = {"status": change.new_status}
                if change.rejection_reason is not None:
                    updates["rejection_reason"] = change.rejection_reason
                if change.responded_at is not None:
                    updates["responded_at"] = change.responded_at
                self.bookings[current.id] = replace(current, **updates)

            for booking in plan.new_bookings:
                self.bookings[booking.id] = deepcopy(booking)
            for record in plan.new_penalties:
                self.penalties.records[record.id] = deepcopy(record)
            self.commits += 1
            return True


class InMemoryProfileLookup(ProfileLookup):
    def __init__(self, profiles: Iterable[PreferenceProfile] = ()):
        self.profiles = {p.user_id: p for p in profiles}

    def put(self, profile: PreferenceProfile) -> None:
        self.profiles[profile.user_id] = profile

    async def get_profiles(
        self, user_ids: Iterable[str]
    ) -> dict[str, PreferenceProfile]:
        return {uid: self.profiles[uid] for uid in user_ids if uid in self.profiles}


class InMemoryPenaltyStore(PenaltyStore):
    def __init__(self):
        self.records: dict[str, PenaltyRecord] = {}

    async def list_for_users(self, user_ids: Iterable[str]) -> list[PenaltyRecord]:
        ids = set(user_ids)
        return [deepcopy(r) for r in self.records.values() if r.user_id in ids]

    async def add(self, record: PenaltyRecord) -> PenaltyRecord:
        self.records[record.id] = deepcopy(record)
        return record

    async def purge_expired(self, now: datetime) -> int:
        expired = [rid for rid, r in self.records.items() if not r.is_active(now)]
        for rid in expired:
            del self.records[rid]
        return len(expired)
