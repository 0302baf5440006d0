"""
Trip Tracking API Tests.

Validates routing, payload handling and error mapping of the HTTP surface.
"""

import pytest

from tracking_backend.tests.simulation import DRIVER_START, PICKUP, trip_payload

BASE = "/v1/tracking"


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["redis"] == "up"
    assert data["active_trips"] == 0


@pytest.mark.asyncio
async def test_start_and_status(client):
    response = await client.post(f"{BASE}/start", json=trip_payload(driverLocation=DRIVER_START))
    assert response.status_code == 201
    data = response.json()
    assert data["trip_id"] == "trip-1"
    assert data["status"] == "active"
    assert data["route"]["source"] == "fallback"
    assert "X-Correlation-ID" in response.headers

    response = await client.get(f"{BASE}/trip-1/status")
    assert response.status_code == 200
    assert response.json()["progress"]["eta_to_pickup_min"] == 4


@pytest.mark.asyncio
async def test_start_defaults_trip_id_to_booking(client):
    payload = trip_payload()
    del payload["tripId"]
    response = await client.post(f"{BASE}/start", json=payload)
    assert response.json()["trip_id"] == "booking-trip-1"


@pytest.mark.asyncio
async def test_start_conflict(client):
    await client.post(f"{BASE}/start", json=trip_payload())
    response = await client.post(f"{BASE}/start", json=trip_payload())

    assert response.status_code == 409
    assert response.json()["error_code"] == "TRIP_ALREADY_TRACKING"


@pytest.mark.asyncio
async def test_start_validation_error(client):
    response = await client.post(f"{BASE}/start", json={"bookingId": "b-1"})
    assert response.status_code == 422
    assert response.json()["error_code"] == "ERR_VALIDATION"


@pytest.mark.asyncio
async def test_location_update_flow(client):
    await client.post(f"{BASE}/start", json=trip_payload())

    response = await client.post(f"{BASE}/trip-1/location", json={**PICKUP, "speed": 18.5, "heading": 10})
    assert response.status_code == 200
    data = response.json()
    assert data["pickup_zone"]["triggered"] is True
    assert data["progress"]["current_stage"] == "at_pickup"
    assert data["current_location"]["speed"] == 18.5


@pytest.mark.asyncio
async def test_location_update_unknown_trip(client):
    response = await client.post(f"{BASE}/missing/location", json=PICKUP)
    assert response.status_code == 404
    assert response.json()["error_code"] == "TRIP_NOT_FOUND"


@pytest.mark.asyncio
async def test_location_update_out_of_range(client):
    await client.post(f"{BASE}/start", json=trip_payload())
    response = await client.post(f"{BASE}/trip-1/location", json={"latitude": 91, "longitude": 0})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_history_eta_and_analytics(client):
    await client.post(f"{BASE}/start", json=trip_payload())
    for point in (DRIVER_START, PICKUP):
        await client.post(f"{BASE}/trip-1/location", json=point)

    history = await client.get(f"{BASE}/trip-1/history", params={"limit": 1})
    assert history.status_code == 200
    assert history.json()["total"] == 1
    assert history.json()["locations"][0]["index"] == 1

    eta = await client.get(f"{BASE}/trip-1/eta")
    assert eta.status_code == 200
    assert eta.json()["pickup"]["is_at_location"] is True

    analytics = await client.get(f"{BASE}/trip-1/analytics")
    assert analytics.status_code == 200
    assert analytics.json()["available"] is True
    assert analytics.json()["analytics"]["location_updates"] == 2


@pytest.mark.asyncio
async def test_history_limit_bounds(client):
    await client.post(f"{BASE}/start", json=trip_payload())
    response = await client.get(f"{BASE}/trip-1/history", params={"limit": 500})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_stop(client):
    await client.post(f"{BASE}/start", json=trip_payload())

    response = await client.post(f"{BASE}/trip-1/stop", json={"reason": "cancelled"})
    assert response.status_code == 200
    assert response.json()["status"] == "stopped"
    assert response.json()["stop_reason"] == "cancelled"

    response = await client.get(f"{BASE}/trip-1/status")
    assert response.status_code == 404

    response = await client.post(f"{BASE}/trip-1/stop")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_stop_defaults_to_completed(client):
    await client.post(f"{BASE}/start", json=trip_payload())
    response = await client.post(f"{BASE}/trip-1/stop")
    assert response.json()["status"] == "completed"


@pytest.mark.asyncio
async def test_active_and_statistics(client):
    await client.post(f"{BASE}/start", json=trip_payload("trip-1"))
    await client.post(f"{BASE}/start", json=trip_payload("trip-2"))

    active = await client.get(f"{BASE}/active")
    assert sorted(t["trip_id"] for t in active.json()) == ["trip-1", "trip-2"]

    stats = await client.get(f"{BASE}/statistics")
    assert stats.json()["active_trips"] == 2
    assert stats.json()["events_published"]["tracking_started"] == 2


@pytest.mark.asyncio
async def test_cleanup(client, clock):
    await client.post(f"{BASE}/start", json=trip_payload())
    clock.advance(seconds=2)

    response = await client.post(f"{BASE}/cleanup", json={"max_age_seconds": 1})
    assert response.status_code == 200
    assert response.json()["stopped_trip_ids"] == ["trip-1"]

    response = await client.post(f"{BASE}/cleanup", json={"max_age_seconds": 0.5})
    assert response.status_code == 400
    assert response.json()["error_code"] == "INVALID_CLEANUP_AGE"


@pytest.mark.asyncio
async def test_recover(client, service):
    await client.post(f"{BASE}/start", json=trip_payload())
    service.registry.remove("trip-1")

    response = await client.post(f"{BASE}/trip-1/recover")
    assert response.status_code == 200
    assert response.json()["trip_id"] == "trip-1"

    response = await client.post(f"{BASE}/missing/recover")
    assert response.status_code == 404
