"""
Fare Calculator  (Strategy Pattern)
===================================

Formula
-------
Fare = max(Minimum_Fare, (Base_Fare + Distance x Rate_Per_KM) x Peak_Multiplier)

* **Peak_Multiplier** = 1.20 when the *local* departure hour falls in
  [07:00, 09:00) or [17:00, 19:00), else 1.0.  The surcharge is applied
  before the minimum-fare clamp.
* The result is rounded half-up to two decimals (RM).

Timestamps are stored in UTC; the caller supplies the local offset
(UTC+8 for Malaysia).

Complexity: O(1) per fare.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal

from .exceptions import InvalidInput

CENTS = Decimal("0.01")
PEAK_WINDOWS: tuple[tuple[int, int], ...] = ((7, 9), (17, 19))


def _money(value) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


# ── Strategy hierarchy ────────────────────────────────────────────────


class PricingStrategy(ABC):
    @abstractmethod
    def calculate(
        self, distance_km: Decimal, base_fare: Decimal, rate_per_km: Decimal
    ) -> Decimal: ...


class StandardPricing(PricingStrategy):
    def calculate(
        self, distance_km: Decimal, base_fare: Decimal, rate_per_km: Decimal
    ) -> Decimal:
        return base_fare + distance_km * rate_per_km


class PeakHourPricing(PricingStrategy):
    def __init__(self, multiplier: Decimal = Decimal("1.20")):
        self.multiplier = _money(multiplier)

    def calculate(
        self, distance_km: Decimal, base_fare: Decimal, rate_per_km: Decimal
    ) -> Decimal:
        return (base_fare + distance_km * rate_per_km) * self.multiplier


# ── Calculator facade ─────────────────────────────────────────────────


class FareCalculator:
    """High-level API used by the booking ledger and the API layer."""

    def __init__(
        self,
        base_fare=Decimal("3.00"),
        per_km_rate=Decimal("1.20"),
        peak_multiplier=Decimal("1.20"),
        minimum_fare=Decimal("5.00"),
        peak_windows: tuple[tuple[int, int], ...] = PEAK_WINDOWS,
    ):
        self.base_fare = _money(base_fare)
        self.per_km_rate = _money(per_km_rate)
        self.peak_multiplier = _money(peak_multiplier)
        self.minimum_fare = _money(minimum_fare)
        self.peak_windows = peak_windows

    @classmethod
    def from_settings(cls, settings) -> "FareCalculator":
        return cls(
            base_fare=settings.base_fare,
            per_km_rate=settings.per_km_rate,
            peak_multiplier=settings.peak_multiplier,
            minimum_fare=settings.minimum_fare,
        )

    @staticmethod
    def local_hour(departure_utc: datetime, local_offset_hours: int) -> int:
        if not isinstance(departure_utc, datetime):
            raise InvalidInput("departure time must be a datetime")
        if isinstance(local_offset_hours, bool) or not isinstance(local_offset_hours, int):
            raise InvalidInput("local offset must be a whole number of hours")
        if not -14 <= local_offset_hours <= 14:
            raise InvalidInput(f"local offset out of range: {local_offset_hours}")
        if departure_utc.tzinfo is None:
            departure_utc = departure_utc.replace(tzinfo=timezone.utc)
        local = departure_utc.astimezone(timezone.utc) + timedelta(
            hours=local_offset_hours
        )
        return local.hour

    def is_peak_hour(self, departure_utc: datetime, local_offset_hours: int) -> bool:
        hour = self.local_hour(departure_utc, local_offset_hours)
        return any(start <= hour < end for start, end in self.peak_windows)

    def strategy_for(
        self, departure_utc: datetime, local_offset_hours: int
    ) -> PricingStrategy:
        if self.is_peak_hour(departure_utc, local_offset_hours):
            return PeakHourPricing(self.peak_multiplier)
        return StandardPricing()

    def compute_fare(
        self,
        distance_km: float,
        departure_utc: datetime,
        local_offset_hours: int,
    ) -> Decimal:
        if isinstance(distance_km, bool) or not isinstance(
            distance_km, (int, float, Decimal)
        ):
            raise InvalidInput("distance must be a number")
        if not math.isfinite(distance_km) or distance_km < 0:
            raise InvalidInput(f"distance must be a finite, non-negative number: {distance_km}")

        strategy = self.strategy_for(departure_utc, local_offset_hours)
        fare = strategy.calculate(
            _money(distance_km), self.base_fare, self.per_km_rate
        )
        fare = max(fare, self.minimum_fare)
        return fare.quantize(CENTS, rounding=ROUND_HALF_UP)

    @staticmethod
    def total_fare(fare_per_seat: Decimal, seats: int) -> Decimal:
        if seats <= 0:
            raise InvalidInput(f"seats must be positive: {seats}")
        return (_money(fare_per_seat) * seats).quantize(CENTS, rounding=ROUND_HALF_UP)


_default_calculator = FareCalculator()


def compute_fare(
    distance_km: float, departure_utc: datetime, local_offset_hours: int
) -> Decimal:
    """Fare per seat with the standard tariff."""
    return _default_calculator.compute_fare(
        distance_km, departure_utc, local_offset_hours
    )
