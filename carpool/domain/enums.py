"""Domain enumerations and state-transition rules."""

import enum


class RideStatus(str, enum.Enum):
    SCHEDULED = "SCHEDULED"
    ACTIVE = "ACTIVE"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


# Rides in these states accept booking requests and appear in searches
OPEN_RIDE_STATUSES = frozenset({RideStatus.SCHEDULED, RideStatus.ACTIVE})

# State machine: maps current status -> set of valid next statuses
RIDE_TRANSITIONS: dict[RideStatus, set[RideStatus]] = {
    RideStatus.SCHEDULED: {
        RideStatus.ACTIVE,
        RideStatus.IN_PROGRESS,
        RideStatus.CANCELLED,
    },
    RideStatus.ACTIVE: {RideStatus.IN_PROGRESS, RideStatus.CANCELLED},
    RideStatus.IN_PROGRESS: {RideStatus.COMPLETED},
    RideStatus.COMPLETED: set(),
    RideStatus.CANCELLED: set(),
}


class BookingStatus(str, enum.Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"


BOOKING_TRANSITIONS: dict[BookingStatus, set[BookingStatus]] = {
    BookingStatus.PENDING: {
        BookingStatus.ACCEPTED,
        BookingStatus.REJECTED,
        BookingStatus.CANCELLED,
    },
    BookingStatus.ACCEPTED: {BookingStatus.CANCELLED, BookingStatus.COMPLETED},
    BookingStatus.REJECTED: set(),
    BookingStatus.CANCELLED: set(),
    BookingStatus.COMPLETED: set(),
}


class PaymentStatus(str, enum.Enum):
    UNPAID = "unpaid"
    PAID = "paid"
    REFUNDED = "refunded"


class Gender(str, enum.Enum):
    MALE = "male"
    FEMALE = "female"
    NON_BINARY = "non_binary"
    PREFER_NOT_TO_SAY = "prefer_not_to_say"


class PassengerGenderPreference(str, enum.Enum):
    NO_PREFERENCE = "no_preference"
    SAME_GENDER_ONLY = "same_gender_only"
    FEMALE_ONLY = "female_only"


class DriverGenderPreference(str, enum.Enum):
    NO_PREFERENCE = "no_preference"
    WOMEN_NON_BINARY_ONLY = "women_non_binary_only"


class PenaltyKind(str, enum.Enum):
    RIDE_DELETION_VIOLATION = "ride_deletion_violation"
    BOOKING_CANCELLATION_VIOLATION = "booking_cancellation_violation"


class NotificationKind(str, enum.Enum):
    BOOKING_REQUESTED = "booking_requested"
    BOOKING_ACCEPTED = "booking_accepted"
    BOOKING_REJECTED = "booking_rejected"
    BOOKING_CANCELLED = "booking_cancelled"
    RIDE_FULL = "ride_full"
    RIDE_STARTED = "ride_started"
    RIDE_COMPLETED = "ride_completed"
    RIDE_CANCELLED = "ride_cancelled"


class MatchTier(str, enum.Enum):
    BEST = "Best"
    GREAT = "Great"
    GOOD = "Good"
    FAIR = "Fair"
