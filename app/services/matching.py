"""
Driver–rider matching engine.

Flow:
  1. Ride (REQUESTED | MATCHING) → MATCHING, row locked for the whole pass
  2. GEOSEARCH Redis for nearest live drivers of the ride's tier
  3. Skip drivers already offered this ride; lock the next one with SET NX EX
  4. Re-check the driver row (ground truth) is still AVAILABLE
  5. Create the OFFERED assignment, ride → MATCHED, notify both sides
  6. Nobody lockable → NO_DRIVERS_AVAILABLE + NO_DRIVERS event

A decline closes the offer, releases the lock, resets the ride to MATCHING
and runs the pass again over the candidates not yet offered.
"""
import logging

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings, get_settings
from app.database import get_for_update
from app.exceptions import DuplicateRequestError, NotFoundError
from app.models.driver import Driver, utcnow
from app.models.enums import AssignmentStatus, DriverStatus, RideEventType, RideStatus
from app.models.ride import Ride, RideAssignment
from app.services import state_machine
from app.services.events import RideEventLog
from app.services.geo_index import GeoDriverIndex
from app.services.notifications import NotificationService

logger = logging.getLogger(__name__)


class MatchingEngine:
    def __init__(
        self,
        db: AsyncSession,
        geo_index: GeoDriverIndex,
        events: RideEventLog,
        notifier: NotificationService,
        settings: Settings | None = None,
    ):
        self._db = db
        self._geo = geo_index
        self._events = events
        self._notifier = notifier
        self._settings = settings or get_settings()

    async def find_and_assign_driver(self, ride_id: str) -> Ride:
        """
        Offer the ride to the nearest lockable driver. Returns the ride in its
        resulting state; a ride that is not REQUESTED/MATCHING is returned
        untouched.
        """
        ride = await get_for_update(self._db, Ride, ride_id)
        if ride is None:
            raise NotFoundError("Ride", ride_id)

        if ride.status not in state_machine.MATCHABLE_RIDE_STATUSES:
            logger.warning("Ride %s is in status %s, cannot match", ride_id, ride.status)
            await self._db.commit()  # release the row lock
            return ride

        if ride.status != RideStatus.MATCHING.value:
            state_machine.RIDE.apply(ride, RideStatus.MATCHING)
        await self._db.flush()

        candidates = await self._geo.nearby(
            ride.pickup_lat,
            ride.pickup_lng,
            self._settings.matching_radius_km,
            ride.vehicle_tier,
        )
        if not candidates:
            logger.warning("No nearby drivers found for ride %s", ride_id)
            return await self._no_drivers(ride)

        offered = await self._offered_driver_ids(ride_id)
        if len(offered) >= self._settings.matching_max_offers_per_ride:
            logger.warning("Ride %s reached %d offers, giving up", ride_id, len(offered))
            return await self._no_drivers(ride)

        for driver_id in candidates:
            if driver_id in offered:
                continue

            if not await self._geo.try_lock(driver_id, ride_id):
                continue  # driver holds another ride's offer

            # Verify driver is still available in DB (ground truth)
            driver = await get_for_update(self._db, Driver, driver_id)
            if driver is None or driver.status != DriverStatus.AVAILABLE.value:
                await self._geo.unlock(driver_id, ride_id)
                continue

            return await self._offer(ride, driver)

        logger.warning("Could not lock any driver for ride %s", ride_id)
        return await self._no_drivers(ride)

    async def handle_driver_decline(self, ride_id: str, driver_id: str) -> Ride:
        ride = await get_for_update(self._db, Ride, ride_id)
        if ride is None:
            raise NotFoundError("Ride", ride_id)
        assignment = await self._assignment_for_update(ride_id, driver_id)
        if assignment is None:
            raise NotFoundError("Assignment", f"{ride_id}+{driver_id}")

        state_machine.ASSIGNMENT.ensure(assignment.status, AssignmentStatus.DECLINED)
        state_machine.RIDE.ensure(ride.status, RideStatus.MATCHING)

        state_machine.ASSIGNMENT.apply(assignment, AssignmentStatus.DECLINED)
        assignment.responded_at = utcnow()
        state_machine.RIDE.apply(ride, RideStatus.MATCHING)
        await self._db.commit()

        await self._geo.unlock(driver_id, ride_id)
        logger.info("Driver %s declined ride %s. Retrying match...", driver_id, ride_id)

        return await self.find_and_assign_driver(ride_id)

    # ------------------------------------------------------------------

    async def _offer(self, ride: Ride, driver: Driver) -> Ride:
        assignment = RideAssignment(
            ride_id=ride.id,
            driver_id=driver.id,
            status=AssignmentStatus.OFFERED.value,
            offered_at=utcnow(),
        )
        self._db.add(assignment)
        state_machine.RIDE.apply(ride, RideStatus.MATCHED)
        try:
            await self._db.commit()
        except IntegrityError:
            await self._db.rollback()
            await self._geo.unlock(driver.id, ride.id)
            raise DuplicateRequestError(f"Ride {ride.id} was already offered to driver {driver.id}")

        await self._notifier.notify_driver(
            driver.id,
            "RIDE_OFFER",
            {
                "rideId": ride.id,
                "pickupLat": ride.pickup_lat,
                "pickupLng": ride.pickup_lng,
                "destinationLat": ride.dest_lat,
                "destinationLng": ride.dest_lng,
                "vehicleTier": ride.vehicle_tier,
                "estimatedFare": str(ride.estimated_fare) if ride.estimated_fare is not None else "N/A",
            },
        )
        await self._notifier.notify_rider(
            ride.rider_id,
            "DRIVER_MATCHED",
            {"rideId": ride.id, "driverName": driver.name, "driverId": driver.id},
        )
        logger.info("Ride %s matched with driver %s", ride.id, driver.id)
        return ride

    async def _no_drivers(self, ride: Ride) -> Ride:
        state_machine.RIDE.apply(ride, RideStatus.NO_DRIVERS_AVAILABLE)
        await self._db.commit()

        await self._events.emit(RideEventType.NO_DRIVERS, ride.id, ride.rider_id)
        await self._notifier.notify_rider(
            ride.rider_id,
            "NO_DRIVERS_AVAILABLE",
            {"rideId": ride.id, "message": "No drivers available nearby. Please try again."},
        )
        return ride

    async def _offered_driver_ids(self, ride_id: str) -> set[str]:
        result = await self._db.execute(select(RideAssignment.driver_id).where(RideAssignment.ride_id == ride_id))
        return set(result.scalars().all())

    async def _assignment_for_update(self, ride_id: str, driver_id: str) -> RideAssignment | None:
        result = await self._db.execute(
            select(RideAssignment)
            .where(RideAssignment.ride_id == ride_id, RideAssignment.driver_id == driver_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def live_offer_count(self, ride_id: str) -> int:
        result = await self._db.execute(
            select(func.count())
            .select_from(RideAssignment)
            .where(RideAssignment.ride_id == ride_id, RideAssignment.status == AssignmentStatus.OFFERED.value)
        )
        return int(result.scalar_one())
