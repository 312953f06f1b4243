"""
Booking Ledger
==============

Owns ride capacity and the booking state machine.  It is the only
component that changes ``seats_remaining``.

Concurrency safety
------------------
Drivers and passengers act from independent devices with no shared lock.
Every mutating command is therefore a read-compute-commit cycle:

1. read the ride (with its ``version``) and the bookings involved;
2. validate and build one ``RideCommit`` describing the new state;
3. ``store.commit`` applies it only if the version and booking statuses
   are unchanged, bumping the version.

A rejected commit restarts at step 1, up to ``max_retries`` times, after
which ``Conflict`` is raised.  Domain errors found during step 2 are raised
immediately.  Because a new booking is also inserted through a version
checked commit, the "ride is full" cascade always sees every Pending
booking that existed when capacity reached zero.

Penalties earned by a command (deleting a ride with accepted passengers,
cancelling late) are part of the same commit, so the change and its penalty
land together or not at all.  Notifications are sent only after a
successful commit and never undo it.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional

from .activation import ActivationGate
from .distance import distance_km
from .entities import Booking, Location, PenaltyRecord, Ride, as_utc
from .enums import (
    BookingStatus,
    DriverGenderPreference,
    NotificationKind,
    PenaltyKind,
    RideStatus,
)
from .exceptions import (
    CapacityExceeded,
    Conflict,
    InvalidInput,
    InvalidStateTransition,
    NotFound,
    RideNotOpen,
)
from .matching import ride_h3_cell
from .penalties import PenaltyGuard
from .ports import BookingChange, BookingStore, Notifier, RideCommit
from .pricing import FareCalculator

logger = logging.getLogger(__name__)

RIDE_FULL_REASON = "Ride is now full"
RIDE_STARTED_REASON = "Ride has already started"
RIDE_ENDED_REASON = "Ride has ended"

LIVE_BOOKING_STATUSES = (BookingStatus.PENDING, BookingStatus.ACCEPTED)


@dataclass
class _Event:
    user_id: str
    kind: NotificationKind
    payload: dict[str, Any]


@dataclass
class _Attempt:
    plan: RideCommit
    result: Any
    events: list[_Event] = field(default_factory=list)


@dataclass
class CancellationResult:
    booking: Booking
    seats_restored: int
    penalty: Optional[PenaltyRecord] = None

    @property
    def penalized(self) -> bool:
        return self.penalty is not None


@dataclass
class DeletionResult:
    ride: Ride
    cancelled_bookings: list[Booking]
    penalty: Optional[PenaltyRecord] = None

    @property
    def penalized(self) -> bool:
        return self.penalty is not None


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _is_positive_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def _log_penalty(record: PenaltyRecord) -> None:
    logger.info(
        "Penalty %s applied to user %s until %s: %s",
        record.kind.value,
        record.user_id,
        record.expires_at.isoformat(),
        record.reason,
    )


class BookingLedger:
    def __init__(
        self,
        store: BookingStore,
        notifier: Notifier,
        penalties: PenaltyGuard,
        *,
        fares: Optional[FareCalculator] = None,
        gate: Optional[ActivationGate] = None,
        local_offset_hours: int = 8,
        max_retries: int = 5,
        gate_bookings_on_penalty: bool = True,
        driver_deletion_penalty: timedelta = timedelta(minutes=20),
        late_cancellation_penalty: timedelta = timedelta(hours=1),
        h3_resolution: int = 7,
        clock: Callable[[], datetime] = _utc_now,
    ):
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self.store = store
        self.notifier = notifier
        self.penalties = penalties
        self.fares = fares or FareCalculator()
        self.gate = gate or ActivationGate()
        self.local_offset_hours = local_offset_hours
        self.max_retries = max_retries
        self.gate_bookings_on_penalty = gate_bookings_on_penalty
        self.driver_deletion_penalty = driver_deletion_penalty
        self.late_cancellation_penalty = late_cancellation_penalty
        self.h3_resolution = h3_resolution
        self.clock = clock

    @classmethod
    def from_settings(
        cls,
        settings,
        store: BookingStore,
        notifier: Notifier,
        penalties: PenaltyGuard,
    ) -> "BookingLedger":
        return cls(
            store,
            notifier,
            penalties,
            fares=FareCalculator.from_settings(settings),
            gate=ActivationGate.from_settings(settings),
            local_offset_hours=settings.local_offset_hours,
            max_retries=settings.max_commit_retries,
            gate_bookings_on_penalty=settings.gate_bookings_on_penalty,
            driver_deletion_penalty=timedelta(
                minutes=settings.driver_deletion_penalty_minutes
            ),
            late_cancellation_penalty=timedelta(
                minutes=settings.late_cancellation_penalty_minutes
            ),
            h3_resolution=settings.h3_resolution,
        )

    # ── Ride commands ─────────────────────────────────────────────────

    async def create_ride(
        self,
        *,
        driver_id: str,
        origin: Location,
        destination: Location,
        scheduled_at: datetime,
        seats_total: int,
        price_per_seat: Decimal = Decimal("0.00"),
        gender_preference: Optional[DriverGenderPreference] = None,
        immediate: bool = False,
        now: Optional[datetime] = None,
    ) -> Ride:
        """Open a new ride offer.  Penalized drivers are refused."""
        now = self._now(now)
        if not _is_positive_int(seats_total):
            raise InvalidInput(f"seats_total must be a positive integer: {seats_total}")
        if not isinstance(scheduled_at, datetime):
            raise InvalidInput("scheduled_at must be a datetime")
        scheduled_at = as_utc(scheduled_at)
        if not immediate and scheduled_at < now:
            raise InvalidInput("scheduled_at is in the past")
        price_per_seat = Decimal(str(price_per_seat))
        if price_per_seat < 0:
            raise InvalidInput("price_per_seat must not be negative")
        for point in (origin, destination):
            if not (-90 <= point.latitude <= 90 and -180 <= point.longitude <= 180):
                raise InvalidInput(f"coordinates out of range: {point}")

        await self.penalties.ensure_not_restricted(driver_id, now, "create rides")

        ride = Ride(
            id=str(uuid.uuid4()),
            driver_id=driver_id,
            origin=origin,
            destination=destination,
            scheduled_at=scheduled_at,
            seats_total=seats_total,
            seats_remaining=seats_total,
            price_per_seat=price_per_seat,
            status=RideStatus.ACTIVE if immediate else RideStatus.SCHEDULED,
            gender_preference=gender_preference,
            origin_cell=ride_h3_cell(
                origin.latitude, origin.longitude, self.h3_resolution
            ),
            created_at=now,
        )
        ride = await self.store.add_ride(ride)
        logger.info(
            "Ride %s created by driver %s (%d seats, departs %s)",
            ride.id,
            driver_id,
            seats_total,
            scheduled_at.isoformat(),
        )
        return ride

    async def activate_ride(self, ride_id: str, *, now: Optional[datetime] = None) -> Ride:
        """Scheduled -> Active, inside the activation window only."""
        now = self._now(now)

        async def attempt() -> _Attempt:
            ride = await self._load_ride(ride_id)
            if ride.status != RideStatus.SCHEDULED:
                raise InvalidStateTransition(
                    f"Only scheduled rides can be activated (ride is {ride.status.value})"
                )
            self._check_window(ride, now)
            return _Attempt(
                RideCommit(ride.id, ride.version, status=RideStatus.ACTIVE),
                replace(ride, status=RideStatus.ACTIVE, version=ride.version + 1),
            )

        return await self._commit("activate_ride", attempt)

    async def start_ride(self, ride_id: str, *, now: Optional[datetime] = None) -> Ride:
        """
        Move a ride to InProgress.  A scheduled ride must be inside its
        activation window; an active ride starts unconditionally.  At least
        one accepted passenger is required.  Requests still pending are
        rejected since the ride no longer takes bookings.
        """
        now = self._now(now)

        async def attempt() -> _Attempt:
            ride = await self._load_ride(ride_id)
            if ride.status == RideStatus.SCHEDULED:
                self._check_window(ride, now)
            elif ride.status != RideStatus.ACTIVE:
                raise InvalidStateTransition(
                    f"Cannot start a ride that is {ride.status.value}"
                )

            bookings = await self.store.list_bookings(ride.id, LIVE_BOOKING_STATUSES)
            accepted = [b for b in bookings if b.status == BookingStatus.ACCEPTED]
            if not accepted:
                raise InvalidStateTransition(
                    "Cannot start a ride without confirmed passengers"
                )

            changes, events = [], []
            for b in bookings:
                if b.status == BookingStatus.PENDING:
                    changes.append(
                        BookingChange(
                            b.id,
                            BookingStatus.PENDING,
                            BookingStatus.REJECTED,
                            rejection_reason=RIDE_STARTED_REASON,
                            responded_at=now,
                        )
                    )
                    events.append(
                        _Event(
                            b.passenger_id,
                            NotificationKind.BOOKING_REJECTED,
                            {"ride_id": ride.id, "booking_id": b.id, "reason": RIDE_STARTED_REASON},
                        )
                    )
                else:
                    events.append(
                        _Event(
                            b.passenger_id,
                            NotificationKind.RIDE_STARTED,
                            {"ride_id": ride.id, "booking_id": b.id},
                        )
                    )
            return _Attempt(
                RideCommit(
                    ride.id,
                    ride.version,
                    status=RideStatus.IN_PROGRESS,
                    booking_changes=changes,
                ),
                replace(ride, status=RideStatus.IN_PROGRESS, version=ride.version + 1),
                events,
            )

        ride = await self._commit("start_ride", attempt)
        logger.info("Ride %s started", ride.id)
        return ride

    async def complete_ride(self, ride_id: str, *, now: Optional[datetime] = None) -> Ride:
        """InProgress -> Completed; any request still pending is rejected."""
        now = self._now(now)

        async def attempt() -> _Attempt:
            ride = await self._load_ride(ride_id)
            if not ride.can_transition_to(RideStatus.COMPLETED):
                raise InvalidStateTransition(
                    f"Cannot complete a ride that is {ride.status.value}"
                )
            changes, events = [], []
            for b in await self.store.list_bookings(ride.id, LIVE_BOOKING_STATUSES):
                if b.status == BookingStatus.ACCEPTED:
                    changes.append(
                        BookingChange(
                            b.id,
                            BookingStatus.ACCEPTED,
                            BookingStatus.COMPLETED,
                            responded_at=now,
                        )
                    )
                    events.append(
                        _Event(
                            b.passenger_id,
                            NotificationKind.RIDE_COMPLETED,
                            {"ride_id": ride.id, "booking_id": b.id},
                        )
                    )
                else:
                    changes.append(
                        BookingChange(
                            b.id,
                            BookingStatus.PENDING,
                            BookingStatus.REJECTED,
                            rejection_reason=RIDE_ENDED_REASON,
                            responded_at=now,
                        )
                    )
                    events.append(
                        _Event(
                            b.passenger_id,
                            NotificationKind.BOOKING_REJECTED,
                            {"ride_id": ride.id, "booking_id": b.id, "reason": RIDE_ENDED_REASON},
                        )
                    )
            return _Attempt(
                RideCommit(
                    ride.id,
                    ride.version,
                    status=RideStatus.COMPLETED,
                    booking_changes=changes,
                ),
                replace(ride, status=RideStatus.COMPLETED, version=ride.version + 1),
                events,
            )

        ride = await self._commit("complete_ride", attempt)
        logger.info("Ride %s completed", ride.id)
        return ride

    async def delete_ride(
        self, ride_id: str, *, now: Optional[datetime] = None
    ) -> DeletionResult:
        """
        Cancel a ride and every live booking on it.  Deleting a ride that
        already has accepted passengers penalizes the driver.
        """
        now = self._now(now)

        async def attempt() -> _Attempt:
            ride = await self._load_ride(ride_id)
            if not ride.can_transition_to(RideStatus.CANCELLED):
                raise InvalidStateTransition(
                    f"Cannot delete a ride that is {ride.status.value}"
                )
            live = await self.store.list_bookings(ride.id, LIVE_BOOKING_STATUSES)
            released = sum(
                b.seats_requested for b in live if b.status == BookingStatus.ACCEPTED
            )
            changes = [
                BookingChange(b.id, b.status, BookingStatus.CANCELLED, responded_at=now)
                for b in live
            ]
            events = [
                _Event(
                    b.passenger_id,
                    NotificationKind.RIDE_CANCELLED,
                    {"ride_id": ride.id, "booking_id": b.id},
                )
                for b in live
            ]
            penalty = self.deletion_penalty(ride, now) if released else None
            result = DeletionResult(
                ride=replace(
                    ride,
                    status=RideStatus.CANCELLED,
                    seats_remaining=ride.seats_remaining + released,
                    version=ride.version + 1,
                ),
                cancelled_bookings=[
                    replace(b, status=BookingStatus.CANCELLED, responded_at=now)
                    for b in live
                ],
                penalty=penalty,
            )
            return _Attempt(
                RideCommit(
                    ride.id,
                    ride.version,
                    seats_remaining=ride.seats_remaining + released,
                    status=RideStatus.CANCELLED,
                    booking_changes=changes,
                    new_penalties=[penalty] if penalty else [],
                ),
                result,
                events,
            )

        result = await self._commit("delete_ride", attempt)
        logger.info(
            "Ride %s deleted, %d booking(s) cancelled",
            ride_id,
            len(result.cancelled_bookings),
        )
        if result.penalized:
            _log_penalty(result.penalty)
        return result

    def deletion_penalty(self, ride: Ride, now: datetime) -> PenaltyRecord:
        """Penalty for deleting a ride that already had accepted passengers."""
        return self.penalties.new_penalty(
            ride.driver_id,
            kind=PenaltyKind.RIDE_DELETION_VIOLATION,
            reason="Deleted a ride that had confirmed passengers",
            duration=self.driver_deletion_penalty,
            now=now,
            ride_id=ride.id,
        )

    # ── Booking commands ──────────────────────────────────────────────

    async def request_booking(
        self,
        ride_id: str,
        passenger_id: str,
        seats_requested: int,
        *,
        now: Optional[datetime] = None,
    ) -> Booking:
        """
        Create a Pending booking.  The capacity check here is advisory:
        nothing is deducted until the driver accepts.
        """
        now = self._now(now)
        if not _is_positive_int(seats_requested):
            raise InvalidInput(f"seats_requested must be a positive integer: {seats_requested}")
        if self.gate_bookings_on_penalty:
            await self.penalties.ensure_not_restricted(passenger_id, now, "book rides")

        async def attempt() -> _Attempt:
            ride = await self._load_ride(ride_id)
            if not ride.is_open:
                raise RideNotOpen(f"Ride {ride.id} is {ride.status.value}")
            if ride.driver_id == passenger_id:
                raise InvalidInput("Drivers cannot book their own ride")
            existing = await self.store.find_booking_for_passenger(
                ride.id, passenger_id, LIVE_BOOKING_STATUSES
            )
            if existing is not None:
                raise InvalidStateTransition(
                    f"Passenger already has a {existing.status.value} request for this ride"
                )
            if not ride.can_accommodate(seats_requested):
                raise CapacityExceeded(
                    f"Requested {seats_requested} seat(s), {ride.seats_remaining} remaining"
                )

            fare = self.fares.compute_fare(
                distance_km(ride.origin, ride.destination),
                ride.scheduled_at,
                self.local_offset_hours,
            )
            booking = Booking(
                id=str(uuid.uuid4()),
                ride_id=ride.id,
                passenger_id=passenger_id,
                seats_requested=seats_requested,
                fare_per_seat=fare,
                requested_at=now,
            )
            return _Attempt(
                RideCommit(ride.id, ride.version, new_bookings=[booking]),
                booking,
                [
                    _Event(
                        ride.driver_id,
                        NotificationKind.BOOKING_REQUESTED,
                        {
                            "ride_id": ride.id,
                            "booking_id": booking.id,
                            "seats": seats_requested,
                        },
                    )
                ],
            )

        booking = await self._commit("request_booking", attempt)
        logger.info(
            "Booking %s requested on ride %s (%d seat(s), RM %s/seat)",
            booking.id,
            ride_id,
            seats_requested,
            booking.fare_per_seat,
        )
        return booking

    async def accept_booking(
        self, booking_id: str, *, now: Optional[datetime] = None
    ) -> Booking:
        """
        Authoritative capacity check.  Deducts seats and, when the ride
        becomes full, rejects every other pending request in the same
        commit.
        """
        now = self._now(now)

        async def attempt() -> _Attempt:
            booking = await self._load_booking(booking_id)
            if not booking.can_transition_to(BookingStatus.ACCEPTED):
                raise InvalidStateTransition(
                    f"Only pending bookings can be accepted (booking is {booking.status.value})"
                )
            ride = await self._load_ride(booking.ride_id)
            if not ride.is_open:
                raise InvalidStateTransition(f"Ride {ride.id} is {ride.status.value}")
            if not ride.can_accommodate(booking.seats_requested):
                raise CapacityExceeded(
                    f"Booking needs {booking.seats_requested} seat(s), "
                    f"{ride.seats_remaining} remaining"
                )

            remaining = ride.seats_remaining - booking.seats_requested
            changes = [
                BookingChange(
                    booking.id,
                    BookingStatus.PENDING,
                    BookingStatus.ACCEPTED,
                    responded_at=now,
                )
            ]
            events = [
                _Event(
                    booking.passenger_id,
                    NotificationKind.BOOKING_ACCEPTED,
                    {"ride_id": ride.id, "booking_id": booking.id},
                )
            ]

            if remaining == 0:
                pending = await self.store.list_bookings(ride.id, [BookingStatus.PENDING])
                for other in pending:
                    if other.id == booking.id:
                        continue
                    changes.append(
                        BookingChange(
                            other.id,
                            BookingStatus.PENDING,
                            BookingStatus.REJECTED,
                            rejection_reason=RIDE_FULL_REASON,
                            responded_at=now,
                        )
                    )
                    events.append(
                        _Event(
                            other.passenger_id,
                            NotificationKind.BOOKING_REJECTED,
                            {
                                "ride_id": ride.id,
                                "booking_id": other.id,
                                "reason": RIDE_FULL_REASON,
                            },
                        )
                    )
                events.append(
                    _Event(ride.driver_id, NotificationKind.RIDE_FULL, {"ride_id": ride.id})
                )

            return _Attempt(
                RideCommit(
                    ride.id,
                    ride.version,
                    seats_remaining=remaining,
                    booking_changes=changes,
                ),
                replace(booking, status=BookingStatus.ACCEPTED, responded_at=now),
                events,
            )

        accepted = await self._commit("accept_booking", attempt)
        logger.info("Booking %s accepted on ride %s", accepted.id, accepted.ride_id)
        return accepted

    async def reject_booking(
        self, booking_id: str, reason: str, *, now: Optional[datetime] = None
    ) -> Booking:
        now = self._now(now)
        if not isinstance(reason, str) or not reason.strip():
            raise InvalidInput("A rejection reason is required")
        reason = reason.strip()

        async def attempt() -> _Attempt:
            booking = await self._load_booking(booking_id)
            if not booking.can_transition_to(BookingStatus.REJECTED):
                raise InvalidStateTransition(
                    f"Only pending bookings can be rejected (booking is {booking.status.value})"
                )
            ride = await self._load_ride(booking.ride_id)
            return _Attempt(
                RideCommit(
                    ride.id,
                    ride.version,
                    booking_changes=[
                        BookingChange(
                            booking.id,
                            BookingStatus.PENDING,
                            BookingStatus.REJECTED,
                            rejection_reason=reason,
                            responded_at=now,
                        )
                    ],
                ),
                replace(
                    booking,
                    status=BookingStatus.REJECTED,
                    rejection_reason=reason,
                    responded_at=now,
                ),
                [
                    _Event(
                        booking.passenger_id,
                        NotificationKind.BOOKING_REJECTED,
                        {"ride_id": ride.id, "booking_id": booking.id, "reason": reason},
                    )
                ],
            )

        rejected = await self._commit("reject_booking", attempt)
        logger.info("Booking %s rejected: %s", rejected.id, reason)
        return rejected

    async def cancel_booking(
        self, booking_id: str, *, now: Optional[datetime] = None
    ) -> CancellationResult:
        """
        Passenger withdraws a pending or accepted booking.  Seats held by an
        accepted booking are returned to the ride.  Withdrawing after the
        ride started or after its departure time earns a penalty.
        """
        now = self._now(now)

        async def attempt() -> _Attempt:
            booking = await self._load_booking(booking_id)
            if not booking.can_transition_to(BookingStatus.CANCELLED):
                raise InvalidStateTransition(
                    f"Cannot cancel a booking that is {booking.status.value}"
                )
            ride = await self._load_ride(booking.ride_id)

            restored = 0
            penalty = None
            if booking.status == BookingStatus.ACCEPTED:
                restored = booking.seats_requested
                if ride.status == RideStatus.IN_PROGRESS or now > as_utc(ride.scheduled_at):
                    penalty = self.penalties.new_penalty(
                        booking.passenger_id,
                        kind=PenaltyKind.BOOKING_CANCELLATION_VIOLATION,
                        reason="Cancelled booking after ride started/departure time",
                        duration=self.late_cancellation_penalty,
                        now=now,
                        ride_id=ride.id,
                    )

            plan = RideCommit(
                ride.id,
                ride.version,
                seats_remaining=ride.seats_remaining + restored if restored else None,
                booking_changes=[
                    BookingChange(
                        booking.id,
                        booking.status,
                        BookingStatus.CANCELLED,
                        responded_at=now,
                    )
                ],
                new_penalties=[penalty] if penalty else [],
            )
            result = CancellationResult(
                booking=replace(booking, status=BookingStatus.CANCELLED, responded_at=now),
                seats_restored=restored,
                penalty=penalty,
            )
            event = _Event(
                ride.driver_id,
                NotificationKind.BOOKING_CANCELLED,
                {"ride_id": ride.id, "booking_id": booking.id, "seats_restored": restored},
            )
            return _Attempt(plan, result, [event])

        result = await self._commit("cancel_booking", attempt)
        logger.info(
            "Booking %s cancelled (%d seat(s) restored)", booking_id, result.seats_restored
        )
        if result.penalized:
            _log_penalty(result.penalty)
        return result

    # ── Internals ─────────────────────────────────────────────────────

    def _now(self, now: Optional[datetime]) -> datetime:
        return as_utc(now) if now is not None else as_utc(self.clock())

    def _check_window(self, ride: Ride, now: datetime) -> None:
        if not self.gate.can_start(ride.scheduled_at, now):
            raise InvalidStateTransition(
                f"Ride {ride.id} can only be started between "
                f"{self.gate.opens_at(ride.scheduled_at).isoformat()} and "
                f"{self.gate.closes_at(ride.scheduled_at).isoformat()}"
            )

    async def _load_ride(self, ride_id: str) -> Ride:
        ride = await self.store.get_ride(ride_id)
        if ride is None:
            raise NotFound(f"Ride {ride_id} not found")
        return ride

    async def _load_booking(self, booking_id: str) -> Booking:
        booking = await self.store.get_booking(booking_id)
        if booking is None:
            raise NotFound(f"Booking {booking_id} not found")
        return booking

    async def _commit(
        self, operation: str, attempt: Callable[[], Awaitable[_Attempt]]
    ) -> Any:
        for n in range(1, self.max_retries + 1):
            outcome = await attempt()
            if await self.store.commit(outcome.plan):
                await self._dispatch(outcome.events)
                return outcome.result
            logger.info(
                "Stale write on ride %s during %s (attempt %d/%d), retrying",
                outcome.plan.ride_id,
                operation,
                n,
                self.max_retries,
            )
        logger.warning("%s gave up after %d conflicting writes", operation, self.max_retries)
        raise Conflict(
            f"{operation} could not commit after {self.max_retries} attempts; try again"
        )

    async def _dispatch(self, events: list[_Event]) -> None:
        for event in events:
            try:
                await self.notifier.notify(event.user_id, event.kind, event.payload)
            except Exception:
                logger.exception(
                    "Failed to notify user %s of %s", event.user_id, event.kind.value
                )
