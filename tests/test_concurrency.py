"""
Concurrency safety tests.

Demonstrates:
1. Concurrent accepts on one ride never overbook it.
2. A request racing the accept that fills the ride is never left pending.
3. Exhausted optimistic retries surface as ``Conflict``.
4. The Redis distributed lock used by the penalty sweeper.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from carpool.domain.enums import BookingStatus
from carpool.domain.exceptions import CapacityExceeded, Conflict, InvalidStateTransition
from carpool.domain.ledger import BookingLedger
from carpool.infrastructure.locks import DistributedLock, LockNotAcquired
from carpool.infrastructure.memory import InMemoryBookingStore
from tests.conftest import CAMPUS, KLCC, NOW


class TestConcurrentAccepts:
    @pytest.mark.asyncio
    async def test_no_overbooking(self, offer_ride, ledger, store):
        ride = await offer_ride(seats=3)
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
        assert store.rides[ride.id].seats_remaining == 0

        held = sum(
            b.seats_requested
            for b in store.bookings.values()
            if b.status == BookingStatus.ACCEPTED
        )
        assert held == 3
        # Losers were rejected by the full-ride cascade, none left pending
        assert not [b for b in store.bookings.values() if b.status == BookingStatus.PENDING]

    @pytest.mark.asyncio
    async def test_multi_seat_race(self, offer_ride, ledger, store):
        ride = await offer_ride(seats=4)
        a = await ledger.request_booking(ride.id, "p1", 3)
        b = await ledger.request_booking(ride.id, "p2", 2)

        results = await asyncio.gather(
            ledger.accept_booking(a.id), ledger.accept_booking(b.id), return_exceptions=True
        )

        assert sum(not isinstance(r, Exception) for r in results) == 1
        remaining = store.rides[ride.id].seats_remaining
        assert remaining in (1, 2)

    @pytest.mark.asyncio
    async def test_request_racing_fill_is_not_left_pending(self, offer_ride, ledger, store):
        ride = await offer_ride(seats=2)
        first = await ledger.request_booking(ride.id, "p1", 2)

        results = await asyncio.gather(
            ledger.accept_booking(first.id),
            ledger.request_booking(ride.id, "p2", 1),
            return_exceptions=True,
        )

        assert store.rides[ride.id].seats_remaining == 0
        late = results[1]
        if isinstance(late, Exception):
            assert isinstance(late, CapacityExceeded)
        else:
            assert store.bookings[late.id].status == BookingStatus.REJECTED

    @pytest.mark.asyncio
    async def test_concurrent_cancel_and_accept_keep_seats_consistent(
        self, offer_ride, ledger, store
    ):
        ride = await offer_ride(seats=4)
        held = await ledger.request_booking(ride.id, "p1", 2)
        await ledger.accept_booking(held.id)
        waiting = await ledger.request_booking(ride.id, "p2", 2)

        await asyncio.gather(
            ledger.cancel_booking(held.id), ledger.accept_booking(waiting.id)
        )

        assert store.rides[ride.id].seats_remaining == 2
        assert store.bookings[held.id].status == BookingStatus.CANCELLED
        assert store.bookings[waiting.id].status == BookingStatus.ACCEPTED


class _AlwaysStale(InMemoryBookingStore):
    async def commit(self, plan):
        self.rejected_commits += 1
        return False


class TestRetryBudget:
    @pytest.mark.asyncio
    async def test_exhausted_retries_raise_conflict(self, notifier, guard):
        store = _AlwaysStale()
        ledger = BookingLedger(store, notifier, guard, max_retries=3, clock=lambda: NOW)
        ride = await ledger.create_ride(
            driver_id="d1",
            origin=CAMPUS,
            destination=KLCC,
            scheduled_at=NOW,
            seats_total=2,
            immediate=True,
        )

        with pytest.raises(Conflict):
            await ledger.request_booking(ride.id, "p1", 1)
        assert store.rejected_commits == 3
        assert notifier.sent == []

    def test_retry_budget_must_be_positive(self, store, notifier, guard):
        with pytest.raises(ValueError):
            BookingLedger(store, notifier, guard, max_retries=0)


class TestDistributedLock:
    """Tests the Redis distributed lock logic (mocked Redis)."""

    @pytest.mark.asyncio
    async def test_acquire_succeeds(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=True)

        lock = DistributedLock(mock_redis, "penalty_sweeper", ttl_seconds=10)
        assert await lock.acquire() is True
        mock_redis.set.assert_awaited_once_with(
            "lock:penalty_sweeper", lock.token, nx=True, ex=10
        )

    @pytest.mark.asyncio
    async def test_acquire_fails_if_held(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=None)

        lock = DistributedLock(mock_redis, "penalty_sweeper", ttl_seconds=10)
        assert await lock.acquire() is False

    @pytest.mark.asyncio
    async def test_release_checks_token(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=True)
        mock_redis.eval = AsyncMock(return_value=1)

        lock = DistributedLock(mock_redis, "penalty_sweeper", ttl_seconds=10)
        await lock.acquire()
        assert await lock.release() is True

        args = mock_redis.eval.await_args.args
        assert args[1:] == (1, "lock:penalty_sweeper", lock.token)

    @pytest.mark.asyncio
    async def test_context_manager_acquire_fail_raises(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=False)

        lock = DistributedLock(mock_redis, "penalty_sweeper", ttl_seconds=10)
        with pytest.raises(LockNotAcquired):
            async with lock:
                pass
        mock_redis.eval.assert_not_called()
