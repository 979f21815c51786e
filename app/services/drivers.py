"""
Driver registration, availability and location updates.
"""
import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_for_update
from app.exceptions import DuplicateRequestError, InvalidStateTransitionError, NotFoundError
from app.models.driver import Driver, utcnow
from app.models.enums import DriverStatus
from app.services import state_machine
from app.services.events import DriverLocationLog
from app.services.geo_index import GeoDriverIndex
from app.services.validation import require, validate_coordinates, validate_tier

logger = logging.getLogger(__name__)


class DriverService:
    def __init__(self, db: AsyncSession, geo_index: GeoDriverIndex, locations: DriverLocationLog):
        self._db = db
        self._geo = geo_index
        self._locations = locations

    async def create_driver(self, name: str, email: str, phone: str, vehicle_tier: str) -> Driver:
        driver = Driver(
            name=require(name, "name"),
            email=require(email, "email"),
            phone=require(phone, "phone"),
            vehicle_tier=validate_tier(vehicle_tier),
            status=DriverStatus.OFFLINE.value,
        )
        self._db.add(driver)
        try:
            await self._db.commit()
        except IntegrityError:
            await self._db.rollback()
            raise DuplicateRequestError("A driver with this email or phone already exists")
        logger.info("Driver %s registered (%s)", driver.id, driver.vehicle_tier)
        return driver

    async def get_driver(self, driver_id: str) -> Driver:
        driver = await self._db.get(Driver, driver_id)
        if driver is None:
            raise NotFoundError("Driver", driver_id)
        return driver

    async def list_drivers(self) -> list[Driver]:
        result = await self._db.execute(select(Driver).order_by(Driver.created_at))
        return list(result.scalars().all())

    async def go_online(self, driver_id: str) -> Driver:
        """AVAILABLE, and into the geo pool when a position is known."""
        driver = await self._lock(driver_id)
        if driver.status == DriverStatus.ON_TRIP.value:
            # only trip completion frees an ON_TRIP driver
            raise InvalidStateTransitionError("Driver", driver.status, DriverStatus.AVAILABLE.value)
        if driver.status != DriverStatus.AVAILABLE.value:
            state_machine.DRIVER.apply(driver, DriverStatus.AVAILABLE)
        await self._db.commit()

        if driver.has_location:
            await self._geo.upsert(driver.id, driver.current_lat, driver.current_lng, driver.vehicle_tier)
        logger.info("Driver %s is now AVAILABLE", driver_id)
        return driver

    async def go_offline(self, driver_id: str) -> Driver:
        driver = await self._lock(driver_id)
        if driver.status != DriverStatus.OFFLINE.value:
            state_machine.DRIVER.apply(driver, DriverStatus.OFFLINE)
        await self._db.commit()

        await self._geo.remove_availability(driver.id)
        logger.info("Driver %s is now OFFLINE", driver_id)
        return driver

    async def update_location(self, driver_id: str, lat: float, lng: float) -> Driver:
        """
        Persist the position; an AVAILABLE driver is re-indexed (refreshing
        its liveness TTL). The ping is published without waiting.
        """
        validate_coordinates(lat, lng)
        driver = await self._lock(driver_id)
        driver.current_lat = lat
        driver.current_lng = lng
        driver.location_updated_at = utcnow()
        await self._db.commit()

        if driver.status == DriverStatus.AVAILABLE.value:
            await self._geo.upsert(driver.id, lat, lng, driver.vehicle_tier)

        self._locations.publish_location(driver)
        return driver

    async def _lock(self, driver_id: str) -> Driver:
        driver = await get_for_update(self._db, Driver, driver_id)
        if driver is None:
            raise NotFoundError("Driver", driver_id)
        return driver
