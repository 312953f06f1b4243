"""
Ride endpoints
==============

POST   /api/v1/rides                     -- driver offers a ride
GET    /api/v1/rides/{ride_id}           -- ride details and seats remaining
DELETE /api/v1/rides/{ride_id}           -- driver deletes (cancels) a ride
POST   /api/v1/rides/{ride_id}/start     -- begin the trip
POST   /api/v1/rides/{ride_id}/complete  -- finish the trip
GET    /api/v1/rides/{ride_id}/activation -- start window for a scheduled ride
POST   /api/v1/rides/search              -- ranked matches for a passenger
POST   /api/v1/rides/{ride_id}/bookings  -- passenger requests seats
"""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request

from carpool.api.dependencies import get_booking_store, get_ledger, get_ride_search
from carpool.api.middleware import DEFAULT_RATE, limiter
from carpool.api.schemas import (
    ActivationResponse,
    BookingCreateRequest,
    BookingResponse,
    DeletionResponse,
    ErrorResponse,
    MatchResponse,
    PenaltyResponse,
    RideCreateRequest,
    RideResponse,
    SearchRequest,
)
from carpool.domain.entities import TripRequest
from carpool.domain.exceptions import NotFound
from carpool.domain.ledger import BookingLedger
from carpool.domain.ports import BookingStore
from carpool.domain.search import RideSearch

router = APIRouter(prefix="/rides", tags=["rides"])

_errors = {
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}


@router.post(
    "",
    status_code=201,
    response_model=RideResponse,
    summary="Offer a ride",
    responses={403: {"model": ErrorResponse}},
)
@limiter.limit(DEFAULT_RATE)
async def create_ride(
    request: Request,
    body: RideCreateRequest,
    ledger: BookingLedger = Depends(get_ledger),
):
    ride = await ledger.create_ride(
        driver_id=body.driver_id,
        origin=body.origin.to_domain(),
        destination=body.destination.to_domain(),
        scheduled_at=body.scheduled_at,
        seats_total=body.seats_total,
        price_per_seat=body.price_per_seat,
        gender_preference=body.gender_preference,
        immediate=body.immediate,
    )
    return RideResponse.from_domain(ride)


@router.post(
    "/search",
    response_model=list[MatchResponse],
    summary="Find rides for a passenger, best match first",
)
@limiter.limit(DEFAULT_RATE)
async def search_rides(
    request: Request,
    body: SearchRequest,
    search: RideSearch = Depends(get_ride_search),
):
    matches = await search.search(
        TripRequest(
            passenger_id=body.passenger_id,
            origin=body.origin.to_domain(),
            destination=body.destination.to_domain(),
            departure_after=body.departure_after,
            seats_needed=body.seats_needed,
        )
    )
    return [MatchResponse.from_domain(m) for m in matches]


@router.get(
    "/{ride_id}",
    response_model=RideResponse,
    summary="Get a ride",
    responses={404: {"model": ErrorResponse}},
)
@limiter.limit(DEFAULT_RATE)
async def get_ride(
    request: Request,
    ride_id: str,
    store: BookingStore = Depends(get_booking_store),
):
    ride = await store.get_ride(ride_id)
    if ride is None:
        raise NotFound(f"Ride {ride_id} not found")
    return RideResponse.from_domain(ride)


@router.delete(
    "/{ride_id}",
    response_model=DeletionResponse,
    summary="Delete a ride",
    description=(
        "Cancels the ride and every pending or accepted booking on it. "
        "Deleting a ride with accepted passengers restricts the driver."
    ),
    responses=_errors,
)
@limiter.limit(DEFAULT_RATE)
async def delete_ride(
    request: Request,
    ride_id: str,
    ledger: BookingLedger = Depends(get_ledger),
):
    result = await ledger.delete_ride(ride_id)
    return DeletionResponse(
        ride=RideResponse.from_domain(result.ride),
        cancelled_booking_ids=[b.id for b in result.cancelled_bookings],
        penalty=PenaltyResponse.from_domain(result.penalty),
    )


@router.post(
    "/{ride_id}/start",
    response_model=RideResponse,
    summary="Start a ride",
    responses=_errors,
)
@limiter.limit(DEFAULT_RATE)
async def start_ride(
    request: Request,
    ride_id: str,
    ledger: BookingLedger = Depends(get_ledger),
):
    return RideResponse.from_domain(await ledger.start_ride(ride_id))


@router.post(
    "/{ride_id}/complete",
    response_model=RideResponse,
    summary="Complete a ride",
    responses=_errors,
)
@limiter.limit(DEFAULT_RATE)
async def complete_ride(
    request: Request,
    ride_id: str,
    ledger: BookingLedger = Depends(get_ledger),
):
    return RideResponse.from_domain(await ledger.complete_ride(ride_id))


@router.get(
    "/{ride_id}/activation",
    response_model=ActivationResponse,
    summary="When a scheduled ride may be started",
    responses={404: {"model": ErrorResponse}},
)
@limiter.limit(DEFAULT_RATE)
async def get_activation(
    request: Request,
    ride_id: str,
    store: BookingStore = Depends(get_booking_store),
    ledger: BookingLedger = Depends(get_ledger),
):
    ride = await store.get_ride(ride_id)
    if ride is None:
        raise NotFound(f"Ride {ride_id} not found")
    gate = ledger.gate
    return ActivationResponse(
        ride_id=ride.id,
        can_start=gate.can_start(ride.scheduled_at, datetime.now(timezone.utc)),
        opens_at=gate.opens_at(ride.scheduled_at),
        closes_at=gate.closes_at(ride.scheduled_at),
    )


@router.post(
    "/{ride_id}/bookings",
    status_code=201,
    response_model=BookingResponse,
    summary="Request seats on a ride",
    description="Creates a PENDING booking; seats are held only once the driver accepts.",
    responses={**_errors, 403: {"model": ErrorResponse}},
)
@limiter.limit(DEFAULT_RATE)
async def request_booking(
    request: Request,
    ride_id: str,
    body: BookingCreateRequest,
    ledger: BookingLedger = Depends(get_ledger),
):
    booking = await ledger.request_booking(
        ride_id, body.passenger_id, body.seats_requested
    )
    return BookingResponse.from_domain(booking)
