"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from carpool.domain.entities import Booking, Location, PenaltyRecord, Ride, ScoredRide
from carpool.domain.enums import (
    BookingStatus,
    DriverGenderPreference,
    MatchTier,
    PaymentStatus,
    RideStatus,
)
from carpool.domain.pricing import FareCalculator


class LocationSchema(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    name: str = Field("", max_length=255)

    model_config = {"from_attributes": True}

    def to_domain(self) -> Location:
        return Location(self.latitude, self.longitude, self.name)


# ── Requests ──────────────────────────────────────────────────────────


class RideCreateRequest(BaseModel):
    driver_id: str = Field(..., min_length=1, max_length=36)
    origin: LocationSchema
    destination: LocationSchema
    scheduled_at: datetime
    seats_total: int = Field(..., ge=1, le=8)
    price_per_seat: Decimal = Field(Decimal("0.00"), ge=0)
    gender_preference: Optional[DriverGenderPreference] = None
    immediate: bool = Field(
        False, description="Offer the ride now; it opens in the ACTIVE state."
    )


class BookingCreateRequest(BaseModel):
    passenger_id: str = Field(..., min_length=1, max_length=36)
    seats_requested: int = Field(1, ge=1, le=8)


class BookingRejectRequest(BaseModel):
    reason: str = Field(..., max_length=255)


class SearchRequest(BaseModel):
    passenger_id: str = Field(..., min_length=1, max_length=36)
    origin: LocationSchema
    destination: LocationSchema
    departure_after: datetime
    seats_needed: int = Field(1, ge=1, le=8)


class FareQuoteRequest(BaseModel):
    distance_km: float = Field(..., ge=0)
    departure_at: datetime
    seats: int = Field(1, ge=1, le=8)
    local_offset_hours: Optional[int] = Field(None, ge=-14, le=14)


# ── Responses ─────────────────────────────────────────────────────────


class RideResponse(BaseModel):
    id: str
    driver_id: str
    origin: LocationSchema
    destination: LocationSchema
    scheduled_at: datetime
    seats_total: int
    seats_remaining: int
    price_per_seat: Decimal
    status: RideStatus
    gender_preference: Optional[DriverGenderPreference] = None
    version: int
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}

    @classmethod
    def from_domain(cls, ride: Ride) -> "RideResponse":
        return cls.model_validate(ride, from_attributes=True)


class BookingResponse(BaseModel):
    id: str
    ride_id: str
    passenger_id: str
    seats_requested: int
    fare_per_seat: Decimal
    total_fare: Decimal
    status: BookingStatus
    rejection_reason: Optional[str] = None
    payment_status: PaymentStatus
    requested_at: Optional[datetime] = None
    responded_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, booking: Booking) -> "BookingResponse":
        return cls(
            id=booking.id,
            ride_id=booking.ride_id,
            passenger_id=booking.passenger_id,
            seats_requested=booking.seats_requested,
            fare_per_seat=booking.fare_per_seat,
            total_fare=FareCalculator.total_fare(
                booking.fare_per_seat, booking.seats_requested
            ),
            status=booking.status,
            rejection_reason=booking.rejection_reason,
            payment_status=booking.payment_status,
            requested_at=booking.requested_at,
            responded_at=booking.responded_at,
        )


class PenaltyResponse(BaseModel):
    kind: str
    reason: str
    expires_at: datetime

    @classmethod
    def from_domain(cls, record: Optional[PenaltyRecord]) -> Optional["PenaltyResponse"]:
        if record is None:
            return None
        return cls(kind=record.kind.value, reason=record.reason, expires_at=record.expires_at)


class CancellationResponse(BaseModel):
    booking: BookingResponse
    seats_restored: int
    penalty: Optional[PenaltyResponse] = None


class DeletionResponse(BaseModel):
    ride: RideResponse
    cancelled_booking_ids: list[str]
    penalty: Optional[PenaltyResponse] = None


class MatchResponse(BaseModel):
    ride: RideResponse
    score: float
    tier: MatchTier
    origin_distance_km: float
    destination_distance_km: float

    @classmethod
    def from_domain(cls, match: ScoredRide) -> "MatchResponse":
        return cls(
            ride=RideResponse.from_domain(match.ride),
            score=round(match.score, 4),
            tier=match.tier,
            origin_distance_km=round(match.origin_distance_km, 3),
            destination_distance_km=round(match.destination_distance_km, 3),
        )


class ActivationResponse(BaseModel):
    ride_id: str
    can_start: bool
    opens_at: datetime
    closes_at: datetime


class FareQuoteResponse(BaseModel):
    fare_per_seat: Decimal
    total_fare: Decimal
    peak: bool


class RestrictionResponse(BaseModel):
    user_id: str
    restricted: bool
    penalty: Optional[PenaltyResponse] = None


class HealthResponse(BaseModel):
    status: str = "ok"


class ErrorResponse(BaseModel):
    detail: str
    error: str
