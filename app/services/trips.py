"""
Trip completion and fare finalization.
"""
import logging
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_for_update
from app.exceptions import NotFoundError
from app.models.driver import Driver, utcnow
from app.models.enums import DriverStatus, RideEventType, TripStatus
from app.models.ride import Ride
from app.models.trip import Trip
from app.services import state_machine
from app.services.events import RideEventLog
from app.services.geo_index import GeoDriverIndex
from app.services.notifications import NotificationService
from app.services.pricing import NO_SURGE, calculate_fare, haversine_km
from app.services.validation import validate_coordinates

logger = logging.getLogger(__name__)


class TripService:
    def __init__(
        self,
        db: AsyncSession,
        geo_index: GeoDriverIndex,
        events: RideEventLog,
        notifier: NotificationService,
    ):
        self._db = db
        self._geo = geo_index
        self._events = events
        self._notifier = notifier

    async def get_trip(self, trip_id: str) -> Trip:
        trip = await self._db.get(Trip, trip_id)
        if trip is None:
            raise NotFoundError("Trip", trip_id)
        return trip

    async def end_trip(self, trip_id: str, end_lat: float, end_lng: float) -> Trip:
        """
        1. Validate trip is IN_PROGRESS
        2. Haversine distance from the trip's start to the drop-off
        3. total fare at trip surge, base fare at 1.0x
        4. Trip COMPLETED, driver AVAILABLE (back in the pool if located)
        5. TRIP_COMPLETED event, rider gets the breakdown
        """
        validate_coordinates(end_lat, end_lng, "end")

        trip = await get_for_update(self._db, Trip, trip_id)
        if trip is None:
            raise NotFoundError("Trip", trip_id)
        state_machine.TRIP.ensure(trip.status, TripStatus.COMPLETED)

        driver = await get_for_update(self._db, Driver, trip.driver_id)
        if driver is None:
            raise NotFoundError("Driver", trip.driver_id)
        state_machine.DRIVER.ensure(driver.status, DriverStatus.AVAILABLE)

        ride = await self._db.get(Ride, trip.ride_id)
        if ride is None:
            raise NotFoundError("Ride", trip.ride_id)

        distance_km = haversine_km(trip.start_lat, trip.start_lng, end_lat, end_lng)
        surge = Decimal(str(trip.surge_multiplier))
        total_fare = calculate_fare(ride.vehicle_tier, distance_km, surge)
        base_fare = calculate_fare(ride.vehicle_tier, distance_km, NO_SURGE)

        state_machine.TRIP.apply(trip, TripStatus.COMPLETED)
        trip.ended_at = utcnow()
        trip.end_lat = end_lat
        trip.end_lng = end_lng
        trip.distance_km = Decimal(str(distance_km)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
        trip.base_fare = base_fare
        trip.total_fare = total_fare

        state_machine.DRIVER.apply(driver, DriverStatus.AVAILABLE)
        await self._db.commit()

        if driver.has_location:
            await self._geo.upsert(driver.id, driver.current_lat, driver.current_lng, driver.vehicle_tier)

        breakdown = {
            "tripId": trip.id,
            "distanceKm": str(trip.distance_km),
            "baseFare": str(base_fare),
            "surgeMultiplier": str(surge),
            "totalFare": str(total_fare),
            "currency": "INR",
        }
        await self._events.emit(RideEventType.TRIP_COMPLETED, trip.ride_id, trip.rider_id, trip.driver_id, **breakdown)
        await self._notifier.notify_rider(trip.rider_id, "TRIP_COMPLETED", breakdown)

        logger.info("Trip %s completed. Distance: %skm, Fare: %s", trip.id, trip.distance_km, total_fare)
        return trip
