"""
SQLAlchemy ORM models.

Tables
------
* ``users``      -- students with their gender / matching preferences
* ``rides``      -- driver trip offers; ``version`` is the optimistic
                    concurrency token for every capacity change
* ``bookings``   -- passenger requests against a ride
* ``penalties``  -- time-boxed restrictions

Indexes
-------
* **B-Tree** on ``rides.status``, ``rides.origin_cell`` and
  ``rides.scheduled_at`` for the candidate query used by ride search.
* **B-Tree** on ``bookings.ride_id`` / ``(ride_id, passenger_id)`` for the
  cascade and duplicate-request look-ups.
* **B-Tree** on ``penalties(user_id, expires_at)`` for the penalty guard.

Coordinates are plain floats and origins are indexed by H3 cell string, so
the schema runs unchanged on PostgreSQL and SQLite.
"""

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    func,
)

from .database import Base
from carpool.domain.enums import (
    BookingStatus,
    DriverGenderPreference,
    Gender,
    PassengerGenderPreference,
    PaymentStatus,
    PenaltyKind,
    RideStatus,
)


class UserModel(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True)
    name = Column(String(120), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    gender = Column(Enum(Gender), nullable=True)
    passenger_preference = Column(
        Enum(PassengerGenderPreference),
        default=PassengerGenderPreference.NO_PREFERENCE,
        nullable=False,
    )
    driver_preference = Column(
        Enum(DriverGenderPreference),
        default=DriverGenderPreference.NO_PREFERENCE,
        nullable=False,
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class RideModel(Base):
    __tablename__ = "rides"

    id = Column(String(36), primary_key=True)
    driver_id = Column(String(36), ForeignKey("users.id"), nullable=False)

    origin_lat = Column(Float, nullable=False)
    origin_lng = Column(Float, nullable=False)
    origin_name = Column(String(255), nullable=False, default="")
    destination_lat = Column(Float, nullable=False)
    destination_lng = Column(Float, nullable=False)
    destination_name = Column(String(255), nullable=False, default="")
    origin_cell = Column(String(20), nullable=True)

    scheduled_at = Column(DateTime(timezone=True), nullable=False)
    seats_total = Column(Integer, nullable=False)
    seats_remaining = Column(Integer, nullable=False)
    price_per_seat = Column(Numeric(10, 2), nullable=False, default=0)
    status = Column(Enum(RideStatus), default=RideStatus.SCHEDULED, nullable=False)
    gender_preference = Column(Enum(DriverGenderPreference), nullable=True)
    version = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("idx_rides_status", "status"),
        Index("idx_rides_origin_cell", "origin_cell"),
        Index("idx_rides_scheduled_at", "scheduled_at"),
        Index("idx_rides_driver", "driver_id"),
        CheckConstraint(
            "seats_remaining >= 0 AND seats_remaining <= seats_total",
            name="ck_rides_seats_in_range",
        ),
    )


class BookingModel(Base):
    __tablename__ = "bookings"

    id = Column(String(36), primary_key=True)
    ride_id = Column(
        String(36), ForeignKey("rides.id", ondelete="CASCADE"), nullable=False
    )
    passenger_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    seats_requested = Column(Integer, nullable=False)
    fare_per_seat = Column(Numeric(10, 2), nullable=False)
    status = Column(Enum(BookingStatus), default=BookingStatus.PENDING, nullable=False)
    rejection_reason = Column(String(255), nullable=True)
    payment_status = Column(
        Enum(PaymentStatus), default=PaymentStatus.UNPAID, nullable=False
    )
    requested_at = Column(DateTime(timezone=True), nullable=True)
    responded_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_bookings_ride", "ride_id"),
        Index("idx_bookings_ride_passenger", "ride_id", "passenger_id"),
        Index("idx_bookings_status", "status"),
    )


class PenaltyModel(Base):
    __tablename__ = "penalties"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    kind = Column(Enum(PenaltyKind), nullable=False)
    reason = Column(String(255), nullable=False)
    ride_id = Column(String(36), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (Index("idx_penalties_user_expiry", "user_id", "expires_at"),)
