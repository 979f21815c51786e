"""
Unit tests for the partitioned event log, its observers and notifications.
"""
import json
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from app.config import Settings
from app.models.driver import Driver
from app.models.enums import RideEventType
from app.schemas.events import DriverLocationPing, RideEvent
from app.services.events import (
    DriverLocationLog,
    EventLog,
    EventLogObserver,
    RideEventLog,
    drain_background_tasks,
    partition_for,
)
from app.services.notifications import NotificationService


class TestPartitioning:
    def test_same_key_same_partition(self):
        assert partition_for("ride-1", 3) == partition_for("ride-1", 3)

    def test_partition_in_range(self):
        for i in range(50):
            assert 0 <= partition_for(f"ride-{i}", 3) < 3

    def test_stream_names(self):
        log = EventLog(AsyncMock(), "ride-events", 3, RideEvent)
        assert log.streams == ["ride-events:0", "ride-events:1", "ride-events:2"]
        assert log.stream_for("ride-1") in log.streams

    def test_rejects_zero_partitions(self):
        with pytest.raises(ValueError):
            EventLog(AsyncMock(), "ride-events", 0, RideEvent)


@pytest.mark.asyncio
class TestRideEventLog:
    async def test_emit_then_read_in_order(self, redis):
        log = RideEventLog(redis)
        await log.emit(RideEventType.REQUESTED, "ride-1", "rider-1")
        await log.emit(RideEventType.DRIVER_ASSIGNED, "ride-1", "rider-1", "driver-1")
        await log.emit(RideEventType.TRIP_STARTED, "ride-1", "rider-1", "driver-1", trip_id="trip-1")

        events = await log.read("ride-1")
        assert [e.event_type for e in events] == [
            RideEventType.REQUESTED,
            RideEventType.DRIVER_ASSIGNED,
            RideEventType.TRIP_STARTED,
        ]
        assert events[2].metadata == {"trip_id": "trip-1"}
        assert events[0].driver_id is None

    async def test_read_only_returns_own_key(self, redis):
        # one partition forces both rides onto the same stream
        log = RideEventLog(redis, Settings(event_partitions=1))
        await log.emit(RideEventType.REQUESTED, "ride-1", "rider-1")
        await log.emit(RideEventType.REQUESTED, "ride-2", "rider-2")
        await log.emit(RideEventType.CANCELLED, "ride-1", "rider-1", reason="changed plans")

        events = await log.read("ride-1")
        assert [e.event_type for e in events] == [RideEventType.REQUESTED, RideEventType.CANCELLED]
        assert await log.read("ride-1", count=1) == events[:1]

    async def test_publish_returns_entry_id(self, redis):
        log = RideEventLog(redis)
        entry_id = await log.publish(RideEvent(ride_id="ride-1", rider_id="rider-1", event_type="REQUESTED"))
        assert "-" in entry_id
        assert await redis.xlen(log.stream_for("ride-1")) == 1

    async def test_publish_failure_propagates(self):
        redis = AsyncMock()
        redis.xadd = AsyncMock(side_effect=RedisConnectionError("down"))
        log = RideEventLog(redis)
        with pytest.raises(RedisConnectionError):
            await log.emit(RideEventType.REQUESTED, "ride-1", "rider-1")


@pytest.mark.asyncio
class TestObservers:
    async def test_each_group_sees_every_event(self, redis):
        log = RideEventLog(redis)
        billing = EventLogObserver(log, "billing")
        analytics = EventLogObserver(log, "analytics")
        await billing.start()
        await analytics.start()

        for ride in ("ride-1", "ride-2"):
            await log.emit(RideEventType.REQUESTED, ride, "rider")
            await log.emit(RideEventType.CANCELLED, ride, "rider")

        for observer in (billing, analytics):
            events = await observer.poll()
            assert len(events) == 4
            ride_1 = [e.event_type for e in events if e.ride_id == "ride-1"]
            assert ride_1 == [RideEventType.REQUESTED, RideEventType.CANCELLED]

    async def test_poll_acknowledges(self, redis):
        log = RideEventLog(redis)
        observer = EventLogObserver(log, "billing")
        await observer.start()
        await log.emit(RideEventType.REQUESTED, "ride-1", "rider")

        assert len(await observer.poll()) == 1
        assert await observer.poll() == []

    async def test_observer_decodes_with_log_model(self, redis):
        log = DriverLocationLog(redis)
        assert (log.redis, log.event_model) == (redis, DriverLocationPing)
        observer = EventLogObserver(log, "dispatch-map")
        await observer.start()
        await log.publish(DriverLocationPing(driver_id="d1", lat=12.93, lng=77.62, vehicle_tier="SEDAN", status="AVAILABLE"))

        [ping] = await observer.poll()
        assert isinstance(ping, DriverLocationPing)
        assert ping.driver_id == "d1"

    async def test_start_is_repeatable(self, redis):
        observer = EventLogObserver(RideEventLog(redis), "billing")
        await observer.start()
        await observer.start()

    async def test_late_observer_skips_history(self, redis):
        log = RideEventLog(redis)
        await log.emit(RideEventType.REQUESTED, "ride-1", "rider")
        observer = EventLogObserver(log, "late")
        await observer.start(from_beginning=False)
        await log.emit(RideEventType.CANCELLED, "ride-1", "rider")

        events = await observer.poll()
        assert [e.event_type for e in events] == [RideEventType.CANCELLED]


@pytest.mark.asyncio
class TestDriverLocationLog:
    async def test_publish_location_nowait(self, redis):
        log = DriverLocationLog(redis)
        driver = Driver(id="d1", name="Ravi", vehicle_tier="AUTO", status="AVAILABLE", current_lat=12.93, current_lng=77.62)
        task = log.publish_location(driver)
        assert task is not None
        await drain_background_tasks()

        pings = await log.read("d1")
        assert len(pings) == 1
        assert isinstance(pings[0], DriverLocationPing)
        assert (pings[0].lat, pings[0].lng) == (12.93, 77.62)

    async def test_skips_driver_without_location(self, redis):
        driver = Driver(id="d1", name="Ravi", vehicle_tier="AUTO", status="OFFLINE")
        assert DriverLocationLog(redis).publish_location(driver) is None

    async def test_nowait_failure_is_logged_not_raised(self, caplog):
        redis = AsyncMock()
        redis.xadd = AsyncMock(side_effect=RedisConnectionError("down"))
        log = DriverLocationLog(redis)
        ping = DriverLocationPing(driver_id="d1", lat=1.0, lng=2.0, vehicle_tier="AUTO", status="AVAILABLE")

        log.publish_nowait(ping)
        await drain_background_tasks()
        assert "Dropped driver-locations event key=d1" in caplog.text


@pytest.mark.asyncio
class TestNotificationService:
    async def test_rider_channel_and_payload(self):
        redis = AsyncMock()
        await NotificationService(redis).notify_rider("rider-1", "DRIVER_MATCHED", {"rideId": "ride-1"})

        channel, message = redis.publish.await_args.args
        assert channel == "notifications:rider:rider-1"
        assert json.loads(message) == {"eventType": "DRIVER_MATCHED", "payload": {"rideId": "ride-1"}}

    async def test_driver_channel(self):
        redis = AsyncMock()
        await NotificationService(redis).notify_driver("driver-1", "RIDE_OFFER", {})
        assert redis.publish.await_args.args[0] == "notifications:driver:driver-1"

    async def test_delivery_failure_is_swallowed(self):
        redis = AsyncMock()
        redis.publish = AsyncMock(side_effect=RedisConnectionError("down"))
        await NotificationService(redis).notify_rider("rider-1", "TRIP_COMPLETED", {})
