"""
Booking endpoints
=================

GET  /api/v1/bookings/{booking_id}         -- booking status and fare
POST /api/v1/bookings/{booking_id}/accept  -- driver accepts (deducts seats)
POST /api/v1/bookings/{booking_id}/reject  -- driver rejects with a reason
POST /api/v1/bookings/{booking_id}/cancel  -- passenger withdraws
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from carpool.api.dependencies import get_booking_store, get_ledger
from carpool.api.middleware import DEFAULT_RATE, limiter
from carpool.api.schemas import (
    BookingRejectRequest,
    BookingResponse,
    CancellationResponse,
    ErrorResponse,
    PenaltyResponse,
)
from carpool.domain.exceptions import NotFound
from carpool.domain.ledger import BookingLedger
from carpool.domain.ports import BookingStore

router = APIRouter(prefix="/bookings", tags=["bookings"])

_errors = {
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}


@router.get(
    "/{booking_id}",
    response_model=BookingResponse,
    summary="Get a booking",
    responses={404: {"model": ErrorResponse}},
)
@limiter.limit(DEFAULT_RATE)
async def get_booking(
    request: Request,
    booking_id: str,
    store: BookingStore = Depends(get_booking_store),
):
    booking = await store.get_booking(booking_id)
    if booking is None:
        raise NotFound(f"Booking {booking_id} not found")
    return BookingResponse.from_domain(booking)


@router.post(
    "/{booking_id}/accept",
    response_model=BookingResponse,
    summary="Accept a pending booking",
    description=(
        "Deducts the booked seats. When the ride becomes full every other "
        "pending request is rejected in the same transaction."
    ),
    responses=_errors,
)
@limiter.limit(DEFAULT_RATE)
async def accept_booking(
    request: Request,
    booking_id: str,
    ledger: BookingLedger = Depends(get_ledger),
):
    return BookingResponse.from_domain(await ledger.accept_booking(booking_id))


@router.post(
    "/{booking_id}/reject",
    response_model=BookingResponse,
    summary="Reject a pending booking",
    responses=_errors,
)
@limiter.limit(DEFAULT_RATE)
async def reject_booking(
    request: Request,
    booking_id: str,
    body: BookingRejectRequest,
    ledger: BookingLedger = Depends(get_ledger),
):
    return BookingResponse.from_domain(
        await ledger.reject_booking(booking_id, body.reason)
    )


@router.post(
    "/{booking_id}/cancel",
    response_model=CancellationResponse,
    summary="Cancel a booking",
    description=(
        "Withdraws a pending or accepted booking. Seats held by an accepted "
        "booking return to the ride."
    ),
    responses=_errors,
)
@limiter.limit(DEFAULT_RATE)
async def cancel_booking(
    request: Request,
    booking_id: str,
    ledger: BookingLedger = Depends(get_ledger),
):
    result = await ledger.cancel_booking(booking_id)
    return CancellationResponse(
        booking=BookingResponse.from_domain(result.booking),
        seats_restored=result.seats_restored,
        penalty=PenaltyResponse.from_domain(result.penalty),
    )
