"""
Integration tests for the matching engine: offers, locks, decline/retry.
"""
import pytest
from sqlalchemy import select

from app.config import Settings
from app.exceptions import InvalidStateTransitionError, NotFoundError
from app.models.ride import RideAssignment
from app.services.events import RideEventLog
from app.services.geo_index import GeoDriverIndex
from app.services.matching import MatchingEngine
from app.services.notifications import NotificationService
from app.services.rides import RideRequest

PICKUP = (12.9352, 77.6245)
DESTINATION = (12.9716, 77.5946)


def ride_request(rider_id: str) -> RideRequest:
    return RideRequest(rider_id, *PICKUP, *DESTINATION, vehicle_tier="SEDAN", payment_method="UPI")


@pytest.fixture
def matching(db, redis):
    return MatchingEngine(db, GeoDriverIndex(redis), RideEventLog(redis), NotificationService(redis))


async def assignments(db, ride_id: str) -> dict[str, str]:
    result = await db.execute(select(RideAssignment).where(RideAssignment.ride_id == ride_id))
    return {a.driver_id: a.status for a in result.scalars()}


@pytest.mark.asyncio
class TestOffer:
    async def test_nearest_driver_gets_offer(self, ride_service, make_rider, make_driver, redis, db):
        rider = await make_rider()
        far = await make_driver(12.9450, 77.6350)
        near = await make_driver(12.9360, 77.6250)

        ride = await ride_service.create_ride(ride_request(rider.id))

        assert ride.status == "MATCHED"
        assert await assignments(db, ride.id) == {near.id: "OFFERED"}
        assert await GeoDriverIndex(redis).lock_holder(near.id) == ride.id
        assert await GeoDriverIndex(redis).lock_holder(far.id) is None

    async def test_locked_driver_is_skipped(self, ride_service, make_rider, make_driver, redis, db):
        rider = await make_rider()
        far = await make_driver(12.9450, 77.6350)
        near = await make_driver(12.9360, 77.6250)
        await GeoDriverIndex(redis).try_lock(near.id, "someone-elses-ride")

        ride = await ride_service.create_ride(ride_request(rider.id))
        assert await assignments(db, ride.id) == {far.id: "OFFERED"}

    async def test_driver_on_trip_in_db_is_skipped(self, ride_service, make_rider, make_driver, redis, db):
        rider = await make_rider()
        driver = await make_driver(12.9360, 77.6250)
        # pool entry still live but the row says the driver is busy
        driver.status = "ON_TRIP"
        await db.commit()

        ride = await ride_service.create_ride(ride_request(rider.id))
        assert ride.status == "NO_DRIVERS_AVAILABLE"
        assert await GeoDriverIndex(redis).lock_holder(driver.id) is None

    async def test_one_live_offer_per_ride(self, ride_service, matching, make_rider, make_driver):
        rider = await make_rider()
        await make_driver(12.9360, 77.6250)
        await make_driver(12.9370, 77.6260)

        ride = await ride_service.create_ride(ride_request(rider.id))
        assert await matching.live_offer_count(ride.id) == 1

        # a second pass on a MATCHED ride is a no-op
        again = await matching.find_and_assign_driver(ride.id)
        assert again.status == "MATCHED"
        assert await matching.live_offer_count(ride.id) == 1

    async def test_unknown_ride(self, matching):
        with pytest.raises(NotFoundError):
            await matching.find_and_assign_driver("missing")

    async def test_driver_is_notified(self, ride_service, make_rider, make_driver, redis):
        rider = await make_rider()
        driver = await make_driver(12.9360, 77.6250)
        pubsub = redis.pubsub()
        await pubsub.subscribe(f"notifications:driver:{driver.id}")
        await pubsub.get_message(timeout=0.1)  # subscribe confirmation

        await ride_service.create_ride(ride_request(rider.id))

        message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=0.5)
        assert message is not None
        assert '"eventType": "RIDE_OFFER"' in message["data"]
        await pubsub.aclose()


@pytest.mark.asyncio
class TestDecline:
    async def test_decline_offers_next_driver(self, ride_service, make_rider, make_driver, redis, db):
        rider = await make_rider()
        first = await make_driver(12.9360, 77.6250)
        second = await make_driver(12.9450, 77.6350)
        ride = await ride_service.create_ride(ride_request(rider.id))

        ride = await ride_service.decline_ride(first.id, ride.id)

        assert ride.status == "MATCHED"
        assert await assignments(db, ride.id) == {first.id: "DECLINED", second.id: "OFFERED"}
        assert await GeoDriverIndex(redis).lock_holder(first.id) is None
        assert await GeoDriverIndex(redis).lock_holder(second.id) == ride.id
        assert await ride_service.list_pending_offers(first.id) == []
        assert [o["ride_id"] for o in await ride_service.list_pending_offers(second.id)] == [ride.id]

    async def test_declining_driver_is_not_reoffered(self, ride_service, make_rider, make_driver, db):
        rider = await make_rider()
        first = await make_driver(12.9360, 77.6250)
        second = await make_driver(12.9450, 77.6350)
        ride = await ride_service.create_ride(ride_request(rider.id))

        await ride_service.decline_ride(first.id, ride.id)
        ride = await ride_service.decline_ride(second.id, ride.id)

        assert ride.status == "NO_DRIVERS_AVAILABLE"
        assert await assignments(db, ride.id) == {first.id: "DECLINED", second.id: "DECLINED"}

    async def test_decline_with_no_one_left(self, ride_service, make_rider, make_driver):
        rider = await make_rider()
        only = await make_driver(12.9360, 77.6250)
        ride = await ride_service.create_ride(ride_request(rider.id))

        ride = await ride_service.decline_ride(only.id, ride.id)
        assert ride.status == "NO_DRIVERS_AVAILABLE"
        events = [e.event_type for e in await ride_service.ride_events(ride.id)]
        assert events == ["REQUESTED", "NO_DRIVERS"]

    async def test_decline_twice_is_rejected(self, ride_service, make_rider, make_driver):
        rider = await make_rider()
        first = await make_driver(12.9360, 77.6250)
        await make_driver(12.9450, 77.6350)
        ride = await ride_service.create_ride(ride_request(rider.id))

        await ride_service.decline_ride(first.id, ride.id)
        with pytest.raises(InvalidStateTransitionError):
            await ride_service.decline_ride(first.id, ride.id)

    async def test_decline_without_offer(self, ride_service, make_rider, make_driver):
        rider = await make_rider()
        await make_driver(12.9360, 77.6250)
        stranger = await make_driver(online=False)
        ride = await ride_service.create_ride(ride_request(rider.id))

        with pytest.raises(NotFoundError):
            await ride_service.decline_ride(stranger.id, ride.id)

    async def test_offer_cap(self, db, redis, ride_service, make_rider, make_driver):
        rider = await make_rider()
        first = await make_driver(12.9360, 77.6250)
        await make_driver(12.9450, 77.6350)
        capped = MatchingEngine(
            db, GeoDriverIndex(redis), RideEventLog(redis), NotificationService(redis),
            Settings(matching_max_offers_per_ride=1),
        )
        ride = await ride_service.create_ride(ride_request(rider.id))

        ride = await capped.handle_driver_decline(ride.id, first.id)
        assert ride.status == "NO_DRIVERS_AVAILABLE"
