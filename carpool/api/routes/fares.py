"""
Fare endpoints
==============

POST /api/v1/fares/quote -- per-seat and total fare for a trip
"""

from fastapi import APIRouter, Depends, Request

from carpool.api.dependencies import get_fare_calculator
from carpool.api.middleware import DEFAULT_RATE, limiter
from carpool.api.schemas import FareQuoteRequest, FareQuoteResponse
from carpool.config import settings
from carpool.domain.pricing import FareCalculator

router = APIRouter(prefix="/fares", tags=["fares"])


@router.post("/quote", response_model=FareQuoteResponse, summary="Quote a fare")
@limiter.limit(DEFAULT_RATE)
async def quote_fare(
    request: Request,
    body: FareQuoteRequest,
    fares: FareCalculator = Depends(get_fare_calculator),
):
    offset = (
        body.local_offset_hours
        if body.local_offset_hours is not None
        else settings.local_offset_hours
    )
    fare = fares.compute_fare(body.distance_km, body.departure_at, offset)
    return FareQuoteResponse(
        fare_per_seat=fare,
        total_fare=fares.total_fare(fare, body.seats),
        peak=fares.is_peak_hour(body.departure_at, offset),
    )
