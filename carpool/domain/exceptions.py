"""Typed errors reported by the booking & matching core."""


class CarpoolError(Exception):
    """Base class; ``kind`` is the stable error name surfaced to callers."""

    kind = "error"


class NotFound(CarpoolError):
    """Raised when a ride or booking cannot be found."""

    kind = "not_found"


class CapacityExceeded(CarpoolError):
    """Raised when requested seats exceed the seats remaining on a ride."""

    kind = "capacity_exceeded"


class InvalidStateTransition(CarpoolError):
    """Raised when a ride or booking is not in a state the command accepts."""

    kind = "invalid_state_transition"


class RideNotOpen(CarpoolError):
    """Raised when a ride no longer accepts booking requests."""

    kind = "ride_not_open"


class InvalidInput(CarpoolError):
    """Raised for malformed distances, timestamps or seat counts."""

    kind = "invalid_input"


class Conflict(CarpoolError):
    """Raised when optimistic-concurrency retries are exhausted."""

    kind = "conflict"


class RestrictedByPenalty(CarpoolError):
    """Raised when a penalized user attempts a gated action."""

    kind = "restricted_by_penalty"
