"""Initial schema: users, rides, bookings and penalties.

Revision ID: 001
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = "001"
down_revision = None
branch_labels = None
depends_on = None

# Enum labels are the Python member names, matching SQLAlchemy's default
GENDER = sa.Enum("MALE", "FEMALE", "NON_BINARY", "PREFER_NOT_TO_SAY", name="gender")
PASSENGER_PREF = sa.Enum(
    "NO_PREFERENCE",
    "SAME_GENDER_ONLY",
    "FEMALE_ONLY",
    name="passengergenderpreference",
)
DRIVER_PREF = sa.Enum(
    "NO_PREFERENCE", "WOMEN_NON_BINARY_ONLY", name="drivergenderpreference"
)
RIDE_STATUS = sa.Enum(
    "SCHEDULED",
    "ACTIVE",
    "IN_PROGRESS",
    "COMPLETED",
    "CANCELLED",
    name="ridestatus",
)
BOOKING_STATUS = sa.Enum(
    "PENDING",
    "ACCEPTED",
    "REJECTED",
    "CANCELLED",
    "COMPLETED",
    name="bookingstatus",
)
PAYMENT_STATUS = sa.Enum("UNPAID", "PAID", "REFUNDED", name="paymentstatus")
PENALTY_KIND = sa.Enum(
    "RIDE_DELETION_VIOLATION", "BOOKING_CANCELLATION_VIOLATION", name="penaltykind"
)


def upgrade() -> None:
    # ── users ─────────────────────────────────────────────────────────
    op.create_table(
        "users",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("email", sa.String(255), unique=True, nullable=False),
        sa.Column("gender", GENDER, nullable=True),
        sa.Column(
            "passenger_preference",
            PASSENGER_PREF,
            server_default="NO_PREFERENCE",
            nullable=False,
        ),
        sa.Column(
            "driver_preference",
            DRIVER_PREF,
            server_default="NO_PREFERENCE",
            nullable=False,
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )

    # ── rides ─────────────────────────────────────────────────────────
    op.create_table(
        "rides",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "driver_id", sa.String(36), sa.ForeignKey("users.id"), nullable=False
        ),
        sa.Column("origin_lat", sa.Float, nullable=False),
        sa.Column("origin_lng", sa.Float, nullable=False),
        sa.Column("origin_name", sa.String(255), nullable=False, server_default=""),
        sa.Column("destination_lat", sa.Float, nullable=False),
        sa.Column("destination_lng", sa.Float, nullable=False),
        sa.Column(
            "destination_name", sa.String(255), nullable=False, server_default=""
        ),
        sa.Column("origin_cell", sa.String(20), nullable=True),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("seats_total", sa.Integer, nullable=False),
        sa.Column("seats_remaining", sa.Integer, nullable=False),
        sa.Column(
            "price_per_seat", sa.Numeric(10, 2), nullable=False, server_default="0"
        ),
        sa.Column("status", RIDE_STATUS, server_default="SCHEDULED", nullable=False),
        sa.Column("gender_preference", DRIVER_PREF, nullable=True),
        sa.Column("version", sa.Integer, nullable=False, server_default="0"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint(
            "seats_remaining >= 0 AND seats_remaining <= seats_total",
            name="ck_rides_seats_in_range",
        ),
    )
    op.create_index("idx_rides_status", "rides", ["status"])
    op.create_index("idx_rides_origin_cell", "rides", ["origin_cell"])
    op.create_index("idx_rides_scheduled_at", "rides", ["scheduled_at"])
    op.create_index("idx_rides_driver", "rides", ["driver_id"])

    # ── bookings ──────────────────────────────────────────────────────
    op.create_table(
        "bookings",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "ride_id",
            sa.String(36),
            sa.ForeignKey("rides.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "passenger_id", sa.String(36), sa.ForeignKey("users.id"), nullable=False
        ),
        sa.Column("seats_requested", sa.Integer, nullable=False),
        sa.Column("fare_per_seat", sa.Numeric(10, 2), nullable=False),
        sa.Column("status", BOOKING_STATUS, server_default="PENDING", nullable=False),
        sa.Column("rejection_reason", sa.String(255), nullable=True),
        sa.Column(
            "payment_status", PAYMENT_STATUS, server_default="UNPAID", nullable=False
        ),
        sa.Column("requested_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("responded_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("idx_bookings_ride", "bookings", ["ride_id"])
    op.create_index(
        "idx_bookings_ride_passenger", "bookings", ["ride_id", "passenger_id"]
    )
    op.create_index("idx_bookings_status", "bookings", ["status"])

    # ── penalties ─────────────────────────────────────────────────────
    op.create_table(
        "penalties",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "user_id", sa.String(36), sa.ForeignKey("users.id"), nullable=False
        ),
        sa.Column("kind", PENALTY_KIND, nullable=False),
        sa.Column("reason", sa.String(255), nullable=False),
        sa.Column("ride_id", sa.String(36), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index(
        "idx_penalties_user_expiry", "penalties", ["user_id", "expires_at"]
    )


def downgrade() -> None:
    op.drop_table("penalties")
    op.drop_table("bookings")
    op.drop_table("rides")
    op.drop_table("users")
    for enum in (
        PENALTY_KIND,
        PAYMENT_STATUS,
        BOOKING_STATUS,
        RIDE_STATUS,
        DRIVER_PREF,
        PASSENGER_PREF,
        GENDER,
    ):
        enum.drop(op.get_bind(), checkfirst=True)
