"""
Ride Matching Engine
====================

1. **Spatial Binning**  -- H3 hexagons (resolution 7, ~5.16 km²) index ride
   origins so the store only returns rides whose origin cell lies within
   ``k`` rings of the passenger's origin cell.
2. **Hard Filters**     -- a candidate is dropped if any fails:
   open status, enough seats, origin and destination within
   ``radius_km`` (2 km), departs at/after the requested time, gender
   compatibility both ways (fail-closed on unknown gender), passenger is
   not the driver, driver not currently penalized.
3. **Scoring**          -- weighted sum of exponential decays:

       score = 0.5·exp(-d_dest / 1 km) + 0.3·exp(-d_origin / 2 km)
             + 0.2·exp(-wait / 60 min)

   Every term is strictly decreasing, so a closer or sooner ride never
   scores below a farther or later one that ties on everything else.
4. **Ordering**         -- score descending, ties by earlier departure.

Complexity
----------
Let N = candidate rides.  Filtering and scoring are O(N); the sort is
O(N log N).  Cell expansion is O(k²) H3 calls.
"""

from __future__ import annotations

import math
from typing import Iterable, Mapping, Optional

import h3

from .distance import distance_km
from .entities import PreferenceProfile, Ride, ScoredRide, TripRequest, as_utc
from .enums import (
    DriverGenderPreference,
    Gender,
    MatchTier,
    PassengerGenderPreference,
)
from .exceptions import InvalidInput

DEFAULT_RADIUS_KM = 2.0

DESTINATION_WEIGHT = 0.5
ORIGIN_WEIGHT = 0.3
TIMING_WEIGHT = 0.2

DESTINATION_DECAY_KM = 1.0
ORIGIN_DECAY_KM = 2.0
TIMING_DECAY_MINUTES = 60.0

# Lower bound of each tier, best first
TIER_THRESHOLDS: tuple[tuple[float, MatchTier], ...] = (
    (0.8, MatchTier.BEST),
    (0.6, MatchTier.GREAT),
    (0.4, MatchTier.GOOD),
)


# ── Spatial binning ───────────────────────────────────────────────────


def ride_h3_cell(lat: float, lng: float, resolution: int = 7) -> str:
    """Map a geo-point to an H3 hexagonal cell index.  O(1)."""
    return h3.latlng_to_cell(lat, lng, resolution)


def candidate_cells(
    lat: float, lng: float, radius_km: float = DEFAULT_RADIUS_KM, resolution: int = 7
) -> set[str]:
    """
    Cells that may contain a ride origin within *radius_km* of the point.

    Neighbouring cell centres are ``sqrt(3) x edge`` apart; one extra ring
    covers points near the far edge of the outermost cell.
    """
    edge_km = h3.average_hexagon_edge_length(resolution, unit="km")
    k = math.ceil(radius_km / (math.sqrt(3) * edge_km)) + 1
    return set(h3.grid_disk(ride_h3_cell(lat, lng, resolution), k))


# ── Gender compatibility ──────────────────────────────────────────────


def passenger_accepts_driver(
    passenger: PreferenceProfile, driver_gender: Optional[Gender]
) -> bool:
    pref = passenger.passenger_preference
    if pref == PassengerGenderPreference.FEMALE_ONLY:
        return driver_gender == Gender.FEMALE
    if pref == PassengerGenderPreference.SAME_GENDER_ONLY:
        # An undisclosed gender can't be shown to be the same as anything
        if passenger.gender in (None, Gender.PREFER_NOT_TO_SAY):
            return False
        return driver_gender == passenger.gender
    return True


def driver_accepts_passenger(
    driver_preference: DriverGenderPreference, passenger_gender: Optional[Gender]
) -> bool:
    if driver_preference == DriverGenderPreference.WOMEN_NON_BINARY_ONLY:
        return passenger_gender in (Gender.FEMALE, Gender.NON_BINARY)
    return True


def gender_compatible(
    ride: Ride,
    passenger: PreferenceProfile,
    driver: Optional[PreferenceProfile],
) -> bool:
    """Both sides' preferences must admit the other; unknown fails closed."""
    driver = driver or PreferenceProfile(user_id=ride.driver_id)
    driver_pref = ride.gender_preference or driver.driver_preference
    return passenger_accepts_driver(passenger, driver.gender) and driver_accepts_passenger(
        driver_pref, passenger.gender
    )


# ── Scoring ───────────────────────────────────────────────────────────


def match_score(
    origin_km: float, destination_km: float, wait_minutes: float
) -> tuple[float, dict[str, float]]:
    components = {
        "destination": math.exp(-destination_km / DESTINATION_DECAY_KM),
        "origin": math.exp(-origin_km / ORIGIN_DECAY_KM),
        "timing": math.exp(-max(0.0, wait_minutes) / TIMING_DECAY_MINUTES),
    }
    score = (
        DESTINATION_WEIGHT * components["destination"]
        + ORIGIN_WEIGHT * components["origin"]
        + TIMING_WEIGHT * components["timing"]
    )
    return score, components


def tier_for(score: float) -> MatchTier:
    for threshold, tier in TIER_THRESHOLDS:
        if score >= threshold:
            return tier
    return MatchTier.FAIR


# ── Engine ────────────────────────────────────────────────────────────


def find_matches(
    request: TripRequest,
    candidate_rides: Iterable[Ride],
    profiles: Mapping[str, PreferenceProfile],
    *,
    radius_km: float = DEFAULT_RADIUS_KM,
    restricted_drivers: Iterable[str] = (),
    limit: Optional[int] = None,
) -> list[ScoredRide]:
    """
    Rank the rides a passenger may book.  Pure: nothing is mutated and
    only the supplied rides / profiles are read.
    """
    if request.seats_needed <= 0:
        raise InvalidInput(f"seats needed must be positive: {request.seats_needed}")

    passenger = profiles.get(request.passenger_id) or PreferenceProfile(
        user_id=request.passenger_id
    )
    blocked = set(restricted_drivers)
    departure_after = as_utc(request.departure_after)

    matches: list[ScoredRide] = []
    for ride in candidate_rides:
        if not ride.is_open:
            continue
        if ride.seats_remaining < request.seats_needed:
            continue
        if ride.driver_id == request.passenger_id or ride.driver_id in blocked:
            continue

        departs = as_utc(ride.scheduled_at)
        if departs < departure_after:
            continue

        origin_km = distance_km(request.origin, ride.origin)
        if origin_km > radius_km:
            continue
        destination_km = distance_km(request.destination, ride.destination)
        if destination_km > radius_km:
            continue

        if not gender_compatible(ride, passenger, profiles.get(ride.driver_id)):
            continue

        wait_minutes = (departs - departure_after).total_seconds() / 60
        score, components = match_score(origin_km, destination_km, wait_minutes)
        matches.append(
            ScoredRide(
                ride=ride,
                score=score,
                tier=tier_for(score),
                origin_distance_km=origin_km,
                destination_distance_km=destination_km,
                components=components,
            )
        )

    matches.sort(key=lambda m: (-m.score, as_utc(m.ride.scheduled_at)))
    return matches[:limit] if limit is not None else matches
