"""
SQLAlchemy adapters against an in-memory SQLite database.

Exercises the conditional commit (version and booking-status checks with
rollback), the candidate query used by search, and the penalty / profile
adapters.  Foreign-key enforcement and the concurrent accept race run on
their own engines.
"""

import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from carpool.domain.entities import PenaltyRecord, TripRequest
from carpool.domain.enums import (
    BookingStatus,
    Gender,
    PassengerGenderPreference,
    PenaltyKind,
    RideStatus,
)
from carpool.domain.exceptions import (
    CapacityExceeded,
    InvalidStateTransition,
    NotFound,
)
from carpool.domain.ledger import RIDE_FULL_REASON, BookingLedger
from carpool.domain.matching import candidate_cells
from carpool.domain.penalties import PenaltyGuard
from carpool.domain.ports import BookingChange, RideCommit
from carpool.domain.search import RideSearch
from carpool.infrastructure.database import init_db
from carpool.infrastructure.models import UserModel
from carpool.infrastructure.stores import (
    SqlBookingStore,
    SqlPenaltyStore,
    SqlProfileLookup,
)
from tests.conftest import CAMPUS, KLCC, NOW


@pytest.fixture
def sql_store(sql_session_factory):
    return SqlBookingStore(sql_session_factory)


@pytest.fixture
def sql_penalties(sql_session_factory):
    return SqlPenaltyStore(sql_session_factory)


@pytest.fixture
def sql_ledger(sql_store, sql_penalties, notifier):
    return BookingLedger(
        sql_store, notifier, PenaltyGuard(sql_penalties), clock=lambda: NOW
    )


async def _offer(ledger, seats=4, hours=3):
    return await ledger.create_ride(
        driver_id="d1",
        origin=CAMPUS,
        destination=KLCC,
        scheduled_at=NOW + timedelta(hours=hours),
        seats_total=seats,
        price_per_seat=Decimal("6.50"),
    )


class TestSqlBookingStore:
    @pytest.mark.asyncio
    async def test_ride_round_trip(self, sql_ledger, sql_store):
        ride = await _offer(sql_ledger)
        loaded = await sql_store.get_ride(ride.id)

        assert loaded.id == ride.id
        assert loaded.scheduled_at == ride.scheduled_at
        assert loaded.price_per_seat == Decimal("6.50")
        assert loaded.status == RideStatus.SCHEDULED
        assert loaded.origin_cell == ride.origin_cell
        assert loaded.version == 0

    @pytest.mark.asyncio
    async def test_missing_rows(self, sql_store):
        assert await sql_store.get_ride("nope") is None
        assert await sql_store.get_booking("nope") is None

    @pytest.mark.asyncio
    async def test_full_ride_cascade(self, sql_ledger, sql_store):
        ride = await _offer(sql_ledger, seats=4)
        big = await sql_ledger.request_booking(ride.id, "p1", 4)
        other = await sql_ledger.request_booking(ride.id, "p2", 1)

        await sql_ledger.accept_booking(big.id)

        stored_ride = await sql_store.get_ride(ride.id)
        assert stored_ride.seats_remaining == 0
        assert stored_ride.version == 3
        rejected = await sql_store.get_booking(other.id)
        assert rejected.status == BookingStatus.REJECTED
        assert rejected.rejection_reason == RIDE_FULL_REASON
        assert rejected.responded_at == NOW

    @pytest.mark.asyncio
    async def test_stale_version_is_refused(self, sql_ledger, sql_store):
        ride = await _offer(sql_ledger)
        ok = await sql_store.commit(RideCommit(ride.id, 0, seats_remaining=3))
        stale = await sql_store.commit(RideCommit(ride.id, 0, seats_remaining=1))

        assert ok and not stale
        stored = await sql_store.get_ride(ride.id)
        assert stored.seats_remaining == 3
        assert stored.version == 1

    @pytest.mark.asyncio
    async def test_stale_booking_status_rolls_back(self, sql_ledger, sql_store):
        ride = await _offer(sql_ledger)
        booking = await sql_ledger.request_booking(ride.id, "p1", 1)
        await sql_ledger.reject_booking(booking.id, "changed plans")
        version = (await sql_store.get_ride(ride.id)).version

        committed = await sql_store.commit(
            RideCommit(
                ride.id,
                version,
                seats_remaining=3,
                booking_changes=[
                    BookingChange(booking.id, BookingStatus.PENDING, BookingStatus.ACCEPTED)
                ],
            )
        )

        assert not committed
        stored = await sql_store.get_ride(ride.id)
        assert stored.version == version
        assert stored.seats_remaining == 4
        assert (await sql_store.get_booking(booking.id)).status == BookingStatus.REJECTED

    @pytest.mark.asyncio
    async def test_find_booking_for_passenger(self, sql_ledger, sql_store):
        ride = await _offer(sql_ledger)
        booking = await sql_ledger.request_booking(ride.id, "p1", 1)

        live = [BookingStatus.PENDING, BookingStatus.ACCEPTED]
        assert (await sql_store.find_booking_for_passenger(ride.id, "p1", live)).id == booking.id
        assert await sql_store.find_booking_for_passenger(ride.id, "p2", live) is None
        assert len(await sql_store.list_bookings(ride.id)) == 1

    @pytest.mark.asyncio
    async def test_list_open_rides(self, sql_ledger, sql_store):
        soon = await _offer(sql_ledger, seats=2, hours=1)
        later = await _offer(sql_ledger, seats=4, hours=5)
        cancelled = await _offer(sql_ledger, seats=4, hours=2)
        await sql_ledger.delete_ride(cancelled.id)

        cells = candidate_cells(CAMPUS.latitude, CAMPUS.longitude)
        found = await sql_store.list_open_rides(
            seats_needed=1, departing_after=NOW, origin_cells=cells
        )
        assert [r.id for r in found] == [soon.id, later.id]

        found = await sql_store.list_open_rides(seats_needed=3, departing_after=NOW)
        assert [r.id for r in found] == [later.id]

        found = await sql_store.list_open_rides(
            seats_needed=1, departing_after=NOW + timedelta(hours=2)
        )
        assert [r.id for r in found] == [later.id]

        found = await sql_store.list_open_rides(
            seats_needed=1,
            departing_after=NOW,
            origin_cells=candidate_cells(3.1184, 101.6768),  # Mid Valley
        )
        assert found == []


class TestSqlPenaltyStore:
    @pytest.mark.asyncio
    async def test_add_list_and_purge(self, sql_penalties):
        for rid, minutes in (("a", 20), ("b", -5)):
            await sql_penalties.add(
                PenaltyRecord(
                    id=rid,
                    user_id="u1",
                    reason="Deleted a ride",
                    expires_at=NOW + timedelta(minutes=minutes),
                    kind=PenaltyKind.RIDE_DELETION_VIOLATION,
                    created_at=NOW,
                )
            )

        records = await sql_penalties.list_for_user("u1")
        assert {r.id for r in records} == {"a", "b"}
        assert all(r.expires_at.tzinfo is not None for r in records)

        assert await sql_penalties.purge_expired(NOW) == 1
        assert [r.id for r in await sql_penalties.list_for_user("u1")] == ["a"]


class TestSqlSearch:
    @pytest.mark.asyncio
    async def test_search_uses_profiles_and_penalties(
        self, sql_session_factory, sql_ledger, sql_penalties
    ):
        async with sql_session_factory() as session:
            session.add_all(
                [
                    UserModel(id="d1", name="Jason", email="d1@example.com", gender=Gender.MALE),
                    UserModel(
                        id="p1",
                        name="Aisyah",
                        email="p1@example.com",
                        gender=Gender.FEMALE,
                        passenger_preference=PassengerGenderPreference.FEMALE_ONLY,
                    ),
                    UserModel(id="p2", name="Priya", email="p2@example.com", gender=Gender.FEMALE),
                ]
            )
            await session.commit()

        ride = await _offer(sql_ledger)
        search = RideSearch(
            SqlBookingStore(sql_session_factory),
            SqlProfileLookup(sql_session_factory),
            PenaltyGuard(sql_penalties),
        )

        def trip(passenger):
            return TripRequest(passenger, CAMPUS, KLCC, NOW)

        assert await search.search(trip("p1"), NOW) == []
        matches = await search.search(trip("p2"), NOW)
        assert [m.ride.id for m in matches] == [ride.id]

        await PenaltyGuard(sql_penalties).penalize(
            "d1",
            kind=PenaltyKind.RIDE_DELETION_VIOLATION,
            reason="Deleted a ride",
            duration=timedelta(minutes=20),
            now=NOW,
        )
        assert await search.search(trip("p2"), NOW) == []


class _UnwritableSqlPenalties(SqlPenaltyStore):
    """Reads work, standalone writes fail."""

    async def add(self, record):
        raise ConnectionError("penalty table unavailable")


class TestSqlPenaltyCommittedWithChange:
    @pytest.mark.asyncio
    async def test_deletion_penalty_rides_the_ride_transaction(
        self, sql_session_factory, sql_store, notifier
    ):
        penalties = _UnwritableSqlPenalties(sql_session_factory)
        ledger = BookingLedger(
            sql_store, notifier, PenaltyGuard(penalties), clock=lambda: NOW
        )
        ride = await _offer(ledger)
        booking = await ledger.request_booking(ride.id, "p1", 1)
        await ledger.accept_booking(booking.id)

        result = await ledger.delete_ride(ride.id)

        assert result.penalized
        assert (await sql_store.get_ride(ride.id)).status == RideStatus.CANCELLED
        [record] = await penalties.list_for_user("d1")
        assert record.kind == PenaltyKind.RIDE_DELETION_VIOLATION
        assert record.ride_id == ride.id
        assert record.expires_at == NOW + timedelta(minutes=20)


# ── Foreign keys enforced ─────────────────────────────────────────────


@pytest_asyncio.fixture
async def fk_session_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    await init_db(engine)
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        session.add(UserModel(id="d1", name="Jason", email="d1@example.com"))
        await session.commit()
    yield factory
    await engine.dispose()


class TestUnknownUsers:
    @pytest.mark.asyncio
    async def test_booking_for_unknown_passenger_is_not_found(
        self, fk_session_factory, notifier
    ):
        store = SqlBookingStore(fk_session_factory)
        ledger = BookingLedger(
            store,
            notifier,
            PenaltyGuard(SqlPenaltyStore(fk_session_factory)),
            clock=lambda: NOW,
        )
        ride = await _offer(ledger)

        with pytest.raises(NotFound, match="ghost"):
            await ledger.request_booking(ride.id, "ghost", 1)

        assert await store.list_bookings(ride.id) == []
        stored = await store.get_ride(ride.id)
        assert stored.version == 0
        assert stored.seats_remaining == 4

    @pytest.mark.asyncio
    async def test_ride_for_unknown_driver_is_not_found(
        self, fk_session_factory, notifier
    ):
        ledger = BookingLedger(
            SqlBookingStore(fk_session_factory),
            notifier,
            PenaltyGuard(SqlPenaltyStore(fk_session_factory)),
            clock=lambda: NOW,
        )
        with pytest.raises(NotFound, match="nobody"):
            await ledger.create_ride(
                driver_id="nobody",
                origin=CAMPUS,
                destination=KLCC,
                scheduled_at=NOW + timedelta(hours=3),
                seats_total=2,
            )

    @pytest.mark.asyncio
    async def test_penalty_for_unknown_user_is_not_found(self, fk_session_factory):
        with pytest.raises(NotFound):
            await SqlPenaltyStore(fk_session_factory).add(
                PenaltyRecord(
                    id="pen-x",
                    user_id="ghost",
                    reason="Cancelled late",
                    expires_at=NOW + timedelta(hours=1),
                )
            )


# ── Concurrent accepts on a file database ─────────────────────────────


@pytest_asyncio.fixture
async def file_session_factory(tmp_path):
    """One connection per session; writers serialise on ``BEGIN IMMEDIATE``."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'carpool.db'}")

    @event.listens_for(engine.sync_engine, "connect")
    def _autocommit_driver(dbapi_connection, connection_record):
        # Let SQLAlchemy emit BEGIN itself
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    await init_db(engine)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


class TestSqlConcurrentAccepts:
    @pytest.mark.asyncio
    async def test_no_overbooking(self, file_session_factory, notifier):
        store = SqlBookingStore(file_session_factory)
        ledger = BookingLedger(
            store,
            notifier,
            PenaltyGuard(SqlPenaltyStore(file_session_factory)),
            clock=lambda: NOW,
            max_retries=10,
        )
        ride = await _offer(ledger, seats=3)
        bookings = [
            await ledger.request_booking(ride.id, f"p{i}", 1) for i in range(5)
        ]

        results = await asyncio.gather(
            *(ledger.accept_booking(b.id) for b in bookings), return_exceptions=True
        )

        accepted = [r for r in results if not isinstance(r, Exception)]
        failures = [r for r in results if isinstance(r, Exception)]
        assert len(accepted) == 3
        assert all(
            isinstance(e, (CapacityExceeded, InvalidStateTransition)) for e in failures
        )

        stored = await store.get_ride(ride.id)
        assert stored.seats_remaining == 0
        final = await store.list_bookings(ride.id)
        assert sum(
            b.seats_requested for b in final if b.status == BookingStatus.ACCEPTED
        ) == 3
        assert not [b for b in final if b.status == BookingStatus.PENDING]
