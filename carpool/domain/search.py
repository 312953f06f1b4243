"""
Passenger ride search.

Reads are uncoordinated: a ride may fill up between search and booking
request, which ``BookingLedger.request_booking`` / ``accept_booking``
detect.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from .entities import ScoredRide, TripRequest
from .exceptions import InvalidInput
from .matching import DEFAULT_RADIUS_KM, candidate_cells, find_matches
from .penalties import PenaltyGuard
from .ports import BookingStore, ProfileLookup

logger = logging.getLogger(__name__)


class RideSearch:
    def __init__(
        self,
        store: BookingStore,
        profiles: ProfileLookup,
        penalties: PenaltyGuard,
        *,
        radius_km: float = DEFAULT_RADIUS_KM,
        h3_resolution: int = 7,
        limit: Optional[int] = None,
    ):
        self.store = store
        self.profiles = profiles
        self.penalties = penalties
        self.radius_km = radius_km
        self.h3_resolution = h3_resolution
        self.limit = limit

    @classmethod
    def from_settings(cls, settings, store, profiles, penalties) -> "RideSearch":
        return cls(
            store,
            profiles,
            penalties,
            radius_km=settings.match_radius_km,
            h3_resolution=settings.h3_resolution,
            limit=settings.search_limit,
        )

    async def search(
        self, request: TripRequest, now: Optional[datetime] = None
    ) -> list[ScoredRide]:
        if request.seats_needed <= 0:
            raise InvalidInput(f"seats needed must be positive: {request.seats_needed}")
        now = now or datetime.now(timezone.utc)
        cells = candidate_cells(
            request.origin.latitude,
            request.origin.longitude,
            self.radius_km,
            self.h3_resolution,
        )
        rides = await self.store.list_open_rides(
            seats_needed=request.seats_needed,
            departing_after=request.departure_after,
            origin_cells=cells,
        )
        if not rides:
            logger.debug("No open rides near %s", request.origin)
            return []

        drivers = {r.driver_id for r in rides}
        profiles = await self.profiles.get_profiles(drivers | {request.passenger_id})
        restricted = await self.penalties.restricted_among(drivers, now)

        matches = find_matches(
            request,
            rides,
            profiles,
            radius_km=self.radius_km,
            restricted_drivers=restricted,
            limit=self.limit,
        )
        logger.info(
            "Search for passenger %s: %d candidate(s), %d match(es)",
            request.passenger_id,
            len(rides),
            len(matches),
        )
        return matches
