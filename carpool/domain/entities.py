"""
Domain entities with business logic.

Patterns used
-------------
- **State Pattern** on ``Ride`` and ``Booking``: ``can_transition_to``
  checks a move against ``RIDE_TRANSITIONS`` / ``BOOKING_TRANSITIONS``.
- ``Ride.can_accommodate`` encapsulates the seat-capacity invariant.
- Optional profile attributes are explicit ``Optional`` values; matching
  treats ``None`` as "unknown", never as a wildcard.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from .enums import (
    BOOKING_TRANSITIONS,
    OPEN_RIDE_STATUSES,
    RIDE_TRANSITIONS,
    BookingStatus,
    DriverGenderPreference,
    Gender,
    MatchTier,
    PassengerGenderPreference,
    PaymentStatus,
    PenaltyKind,
    RideStatus,
)
from .exceptions import InvalidInput


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalise to an aware UTC datetime; naive values are taken as UTC."""
    if value is None:
        return None
    if not isinstance(value, datetime):
        raise InvalidInput("timestamps must be datetimes")
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ── Value Objects ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class Location:
    latitude: float
    longitude: float
    name: str = ""


@dataclass(frozen=True)
class PreferenceProfile:
    user_id: str
    gender: Optional[Gender] = None
    passenger_preference: PassengerGenderPreference = (
        PassengerGenderPreference.NO_PREFERENCE
    )
    driver_preference: DriverGenderPreference = DriverGenderPreference.NO_PREFERENCE


@dataclass(frozen=True)
class TripRequest:
    passenger_id: str
    origin: Location
    destination: Location
    departure_after: datetime
    seats_needed: int = 1


# ── Entities ──────────────────────────────────────────────────────────


@dataclass
class Ride:
    id: str
    driver_id: str
    origin: Location
    destination: Location
    scheduled_at: datetime
    seats_total: int
    seats_remaining: int
    price_per_seat: Decimal = Decimal("0.00")
    status: RideStatus = RideStatus.SCHEDULED
    gender_preference: Optional[DriverGenderPreference] = None
    origin_cell: Optional[str] = None
    version: int = 0
    created_at: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_RIDE_STATUSES

    def can_accommodate(self, seats: int) -> bool:
        return 0 < seats <= self.seats_remaining

    def can_transition_to(self, new_status: RideStatus) -> bool:
        return new_status in RIDE_TRANSITIONS.get(self.status, set())


@dataclass
class Booking:
    id: str
    ride_id: str
    passenger_id: str
    seats_requested: int
    fare_per_seat: Decimal
    status: BookingStatus = BookingStatus.PENDING
    rejection_reason: Optional[str] = None
    payment_status: PaymentStatus = PaymentStatus.UNPAID
    requested_at: Optional[datetime] = None
    responded_at: Optional[datetime] = None

    def can_transition_to(self, new_status: BookingStatus) -> bool:
        return new_status in BOOKING_TRANSITIONS.get(self.status, set())


@dataclass
class PenaltyRecord:
    id: str
    user_id: str
    reason: str
    expires_at: datetime
    kind: PenaltyKind = PenaltyKind.RIDE_DELETION_VIOLATION
    ride_id: Optional[str] = None
    created_at: Optional[datetime] = None

    def is_active(self, now: datetime) -> bool:
        return self.expires_at > now


@dataclass
class ScoredRide:
    ride: Ride
    score: float
    tier: MatchTier
    origin_distance_km: float
    destination_distance_km: float
    components: dict[str, float] = field(default_factory=dict)
