"""
Integration tests for the REST API endpoints.

The store, penalty, profile and notifier providers are overridden with
the in-memory adapters, and the penalty sweeper is patched out, so no
database or Redis is needed.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from carpool.domain.entities import PenaltyRecord, PreferenceProfile
from carpool.domain.enums import Gender, NotificationKind
from carpool.infrastructure.memory import (
    InMemoryBookingStore,
    InMemoryPenaltyStore,
    InMemoryProfileLookup,
)

CAMPUS = {"latitude": 3.2167, "longitude": 101.7333, "name": "TARC KL"}
KLCC = {"latitude": 3.1478, "longitude": 101.6953, "name": "KLCC"}


@pytest_asyncio.fixture
async def api(notifier):
    """AsyncClient wired to fresh in-memory adapters."""
    penalties = InMemoryPenaltyStore()
    store = InMemoryBookingStore(penalties)
    profiles = InMemoryProfileLookup(
        [
            PreferenceProfile("driver-1", Gender.MALE),
            PreferenceProfile("p1", Gender.FEMALE),
        ]
    )

    with (
        patch(
            "carpool.workers.penalty_sweeper.start_penalty_sweeper",
            new_callable=AsyncMock,
        ),
        patch(
            "carpool.workers.penalty_sweeper.stop_penalty_sweeper",
            new_callable=AsyncMock,
        ),
    ):
        from carpool.api import dependencies
        from carpool.api.app import create_app

        app = create_app()
        app.dependency_overrides[dependencies.get_booking_store] = lambda: store
        app.dependency_overrides[dependencies.get_penalty_store] = lambda: penalties
        app.dependency_overrides[dependencies.get_profile_lookup] = lambda: profiles
        app.dependency_overrides[dependencies.get_notifier] = lambda: notifier

        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            ac.store = store
            ac.penalties = penalties
            yield ac


async def offer(api, seats=3, hours=3, **extra):
    body = {
        "driver_id": "driver-1",
        "origin": CAMPUS,
        "destination": KLCC,
        "scheduled_at": (datetime.now(timezone.utc) + timedelta(hours=hours)).isoformat(),
        "seats_total": seats,
        "price_per_seat": "6.00",
        **extra,
    }
    resp = await api.post("/api/v1/rides", json=body)
    assert resp.status_code == 201, resp.text
    return resp.json()


async def book(api, ride_id, passenger="p1", seats=1):
    return await api.post(
        f"/api/v1/rides/{ride_id}/bookings",
        json={"passenger_id": passenger, "seats_requested": seats},
    )


# ── Tests ─────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_health(api: AsyncClient):
    resp = await api.get("/api/v1/admin/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_create_and_get_ride(api: AsyncClient):
    ride = await offer(api, seats=3)
    assert ride["status"] == "SCHEDULED"
    assert ride["seats_remaining"] == 3
    assert ride["origin"]["name"] == "TARC KL"

    resp = await api.get(f"/api/v1/rides/{ride['id']}")
    assert resp.status_code == 200
    assert resp.json()["id"] == ride["id"]


@pytest.mark.asyncio
async def test_get_ride_not_found(api: AsyncClient):
    resp = await api.get("/api/v1/rides/missing")
    assert resp.status_code == 404
    assert resp.json()["error"] == "not_found"


@pytest.mark.asyncio
async def test_create_ride_validates_body(api: AsyncClient):
    resp = await api.post(
        "/api/v1/rides",
        json={
            "driver_id": "driver-1",
            "origin": {"latitude": 95, "longitude": 101.7},
            "destination": KLCC,
            "scheduled_at": datetime.now(timezone.utc).isoformat(),
            "seats_total": 0,
        },
    )
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_booking_flow(api: AsyncClient, notifier):
    ride = await offer(api, seats=2)

    resp = await book(api, ride["id"], "p1", 2)
    assert resp.status_code == 201
    booking = resp.json()
    assert booking["status"] == "PENDING"
    assert float(booking["total_fare"]) == pytest.approx(2 * float(booking["fare_per_seat"]))

    other = (await book(api, ride["id"], "p2", 1)).json()

    resp = await api.post(f"/api/v1/bookings/{booking['id']}/accept")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ACCEPTED"

    ride_now = (await api.get(f"/api/v1/rides/{ride['id']}")).json()
    assert ride_now["seats_remaining"] == 0

    resp = await api.get(f"/api/v1/bookings/{other['id']}")
    assert resp.json()["status"] == "REJECTED"
    assert resp.json()["rejection_reason"] == "Ride is now full"
    assert NotificationKind.RIDE_FULL in notifier.kinds_for("driver-1")


@pytest.mark.asyncio
async def test_overbooking_request_is_conflict(api: AsyncClient):
    ride = await offer(api, seats=1)
    resp = await book(api, ride["id"], "p1", 2)
    assert resp.status_code == 409
    assert resp.json()["error"] == "capacity_exceeded"


@pytest.mark.asyncio
async def test_reject_requires_reason(api: AsyncClient):
    ride = await offer(api)
    booking = (await book(api, ride["id"])).json()

    resp = await api.post(f"/api/v1/bookings/{booking['id']}/reject", json={"reason": " "})
    assert resp.status_code == 422
    assert resp.json()["error"] == "invalid_input"

    resp = await api.post(
        f"/api/v1/bookings/{booking['id']}/reject", json={"reason": "Car is full"}
    )
    assert resp.status_code == 200
    assert resp.json()["rejection_reason"] == "Car is full"


@pytest.mark.asyncio
async def test_cancel_accepted_booking_restores_seats(api: AsyncClient):
    ride = await offer(api, seats=3)
    booking = (await book(api, ride["id"], "p1", 2)).json()
    await api.post(f"/api/v1/bookings/{booking['id']}/accept")

    resp = await api.post(f"/api/v1/bookings/{booking['id']}/cancel")
    assert resp.status_code == 200
    assert resp.json()["seats_restored"] == 2
    assert resp.json()["penalty"] is None

    ride_now = (await api.get(f"/api/v1/rides/{ride['id']}")).json()
    assert ride_now["seats_remaining"] == 3


@pytest.mark.asyncio
async def test_delete_ride_with_passenger_restricts_driver(api: AsyncClient):
    ride = await offer(api)
    booking = (await book(api, ride["id"])).json()
    await api.post(f"/api/v1/bookings/{booking['id']}/accept")

    resp = await api.delete(f"/api/v1/rides/{ride['id']}")
    assert resp.status_code == 200
    body = resp.json()
    assert body["ride"]["status"] == "CANCELLED"
    assert body["cancelled_booking_ids"] == [booking["id"]]
    assert body["penalty"]["kind"] == "ride_deletion_violation"

    resp = await api.get("/api/v1/users/driver-1/restriction")
    assert resp.json()["restricted"] is True

    resp = await api.post(
        "/api/v1/rides",
        json={
            "driver_id": "driver-1",
            "origin": CAMPUS,
            "destination": KLCC,
            "scheduled_at": (datetime.now(timezone.utc) + timedelta(hours=3)).isoformat(),
            "seats_total": 2,
        },
    )
    assert resp.status_code == 403
    assert resp.json()["error"] == "restricted_by_penalty"


@pytest.mark.asyncio
async def test_restricted_passenger_cannot_book(api: AsyncClient):
    ride = await offer(api)
    await api.penalties.add(
        PenaltyRecord(
            id="pen-1",
            user_id="p9",
            reason="Cancelled late",
            expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
        )
    )
    resp = await book(api, ride["id"], "p9")
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_start_and_complete_ride(api: AsyncClient):
    ride = await offer(api, hours=0, immediate=True)
    assert ride["status"] == "ACTIVE"

    resp = await api.post(f"/api/v1/rides/{ride['id']}/start")
    assert resp.status_code == 409
    assert resp.json()["error"] == "invalid_state_transition"

    booking = (await book(api, ride["id"])).json()
    await api.post(f"/api/v1/bookings/{booking['id']}/accept")

    resp = await api.post(f"/api/v1/rides/{ride['id']}/start")
    assert resp.status_code == 200
    assert resp.json()["status"] == "IN_PROGRESS"

    resp = await api.post(f"/api/v1/rides/{ride['id']}/complete")
    assert resp.status_code == 200
    assert resp.json()["status"] == "COMPLETED"
    assert (await api.get(f"/api/v1/bookings/{booking['id']}")).json()["status"] == "COMPLETED"


@pytest.mark.asyncio
async def test_activation_window(api: AsyncClient):
    ride = await offer(api, hours=5)
    resp = await api.get(f"/api/v1/rides/{ride['id']}/activation")
    assert resp.status_code == 200
    assert resp.json()["can_start"] is False

    ride = await offer(api, hours=1)
    resp = await api.get(f"/api/v1/rides/{ride['id']}/activation")
    assert resp.json()["can_start"] is True


@pytest.mark.asyncio
async def test_search(api: AsyncClient):
    ride = await offer(api, hours=1)
    resp = await api.post(
        "/api/v1/rides/search",
        json={
            "passenger_id": "p1",
            "origin": CAMPUS,
            "destination": KLCC,
            "departure_after": datetime.now(timezone.utc).isoformat(),
            "seats_needed": 1,
        },
    )
    assert resp.status_code == 200
    matches = resp.json()
    assert [m["ride"]["id"] for m in matches] == [ride["id"]]
    assert matches[0]["tier"] in ("Best", "Great", "Good", "Fair")


@pytest.mark.asyncio
async def test_fare_quote(api: AsyncClient):
    resp = await api.post(
        "/api/v1/fares/quote",
        json={
            "distance_km": 10.0,
            "departure_at": "2026-03-02T00:00:00Z",
            "seats": 2,
        },
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["fare_per_seat"] == "18.00"
    assert body["total_fare"] == "36.00"
    assert body["peak"] is True


@pytest.mark.asyncio
async def test_unrestricted_user(api: AsyncClient):
    resp = await api.get("/api/v1/users/nobody/restriction")
    assert resp.status_code == 200
    assert resp.json() == {"user_id": "nobody", "restricted": False, "penalty": None}


@pytest.mark.asyncio
async def test_lifespan_closes_redis_pool():
    from carpool.api.app import create_app, lifespan

    with (
        patch(
            "carpool.workers.penalty_sweeper.start_penalty_sweeper",
            new_callable=AsyncMock,
        ) as start,
        patch(
            "carpool.workers.penalty_sweeper.stop_penalty_sweeper",
            new_callable=AsyncMock,
        ) as stop,
        patch(
            "carpool.infrastructure.redis_client.close_redis",
            new_callable=AsyncMock,
        ) as close,
    ):
        async with lifespan(create_app()):
            start.assert_awaited_once()
            close.assert_not_awaited()

        stop.assert_awaited_once()
        close.assert_awaited_once()
