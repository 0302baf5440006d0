"""
Concurrency Tests.

Validates that races between updates, stops and sweeps are handled correctly.
"""

import asyncio

import pytest

from tracking_backend.app.core.exceptions import AlreadyTrackingError, TripNotFoundError
from tracking_backend.app.models.tracking_enums import TripStage
from tracking_backend.app.services.persistence import cache_key
from tracking_backend.tests.simulation import DRIVER_START, PICKUP, drive, trip_payload


@pytest.mark.asyncio
async def test_duplicate_reports_trigger_geofence_once(service, recorder):
    """Test a driver app resending the same arrival report concurrently."""
    await service.start_tracking("trip-1", trip_payload())

    await asyncio.gather(*[service.update_location("trip-1", PICKUP) for _ in range(20)])

    state = await service.get_status("trip-1")
    assert state.samples_received == 20
    assert [s.index for s in state.location_history] == list(range(20))
    assert len(recorder.of("geofence_triggered")) == 1
    assert state.progress.current_stage == TripStage.AT_PICKUP


@pytest.mark.asyncio
async def test_concurrent_trips_are_independent(service):
    """Test many trips updated in parallel keep their own histories."""
    trip_ids = [f"trip-{i}" for i in range(10)]
    for trip_id in trip_ids:
        await service.start_tracking(trip_id, trip_payload(trip_id))

    async def run(trip_id):
        for report in drive(DRIVER_START, PICKUP, 5):
            await service.update_location(trip_id, report)

    await asyncio.gather(*[run(trip_id) for trip_id in trip_ids])

    for trip_id in trip_ids:
        state = await service.get_status(trip_id)
        assert state.samples_received == 5
        assert state.pickup_zone.triggered is True


@pytest.mark.asyncio
async def test_concurrent_stop_only_one_wins(service, recorder):
    """Test two stops racing on one trip: one succeeds, one gets not found."""
    await service.start_tracking("trip-1", trip_payload())

    results = await asyncio.gather(
        service.stop_tracking("trip-1"),
        service.stop_tracking("trip-1"),
        return_exceptions=True,
    )

    assert sum(isinstance(r, TripNotFoundError) for r in results) == 1
    assert len(recorder.of("tracking_stopped")) == 1


@pytest.mark.asyncio
async def test_update_racing_stop(service):
    """Test updates queued behind a stop fail cleanly instead of resurrecting the trip."""
    await service.start_tracking("trip-1", trip_payload())

    results = await asyncio.gather(
        service.stop_tracking("trip-1"),
        *[service.update_location("trip-1", DRIVER_START) for _ in range(5)],
        return_exceptions=True,
    )

    assert not isinstance(results[0], Exception)
    for result in results[1:]:
        assert isinstance(result, TripNotFoundError)
    assert await service.list_active() == []


@pytest.mark.asyncio
async def test_restart_waits_for_final_write(service, mock_redis, mocker):
    """A trip id cannot be reused until the previous trip's final write has landed."""
    await service.start_tracking("trip-1", trip_payload())

    finalize = service.persistence.finalize
    entered = asyncio.Event()
    release = asyncio.Event()

    async def slow_finalize(state):
        entered.set()
        await release.wait()
        await finalize(state)

    mocker.patch.object(service.persistence, "finalize", side_effect=slow_finalize)
    stopping = asyncio.create_task(service.stop_tracking("trip-1"))
    await entered.wait()

    with pytest.raises(AlreadyTrackingError):
        await service.start_tracking("trip-1", trip_payload())

    release.set()
    await stopping

    restarted = await service.start_tracking("trip-1", trip_payload())
    assert restarted.status == "active"
    assert cache_key("trip-1") in mock_redis.store


@pytest.mark.asyncio
async def test_subscriber_can_stop_trip_from_its_event(service):
    """Subscribers run after the trip lock is released."""
    stopped = []

    async def stop_on_arrival(event):
        stopped.append(await service.stop_tracking(event.trip_id))

    service.event_bus.subscribe(stop_on_arrival, ["geofence_triggered"])
    await service.start_tracking("trip-1", trip_payload())

    await asyncio.wait_for(service.update_location("trip-1", PICKUP), timeout=2)

    assert stopped[0].status == "completed"
    assert not service.registry.contains("trip-1")
