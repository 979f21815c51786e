"""
Explicit service composition. Each factory builds a service from the
request's DB session and the shared Redis client; routers receive them via
FastAPI `Depends`.
"""
import redis.asyncio as aioredis
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.database import get_db
from app.redis_client import get_redis
from app.services.drivers import DriverService
from app.services.events import DriverLocationLog, RideEventLog
from app.services.geo_index import GeoDriverIndex
from app.services.matching import MatchingEngine
from app.services.notifications import NotificationService
from app.services.payment import PaymentService, get_psp
from app.services.pricing import SurgeEstimator
from app.services.riders import RiderService
from app.services.rides import RideService
from app.services.trips import TripService


def build_ride_service(db: AsyncSession, redis: aioredis.Redis) -> RideService:
    settings = get_settings()
    geo = GeoDriverIndex(redis, settings)
    events = RideEventLog(redis, settings)
    notifier = NotificationService(redis)
    matching = MatchingEngine(db, geo, events, notifier, settings)
    return RideService(db, geo, SurgeEstimator(redis, settings), matching, events, notifier)


def build_trip_service(db: AsyncSession, redis: aioredis.Redis) -> TripService:
    settings = get_settings()
    return TripService(db, GeoDriverIndex(redis, settings), RideEventLog(redis, settings), NotificationService(redis))


def build_driver_service(db: AsyncSession, redis: aioredis.Redis) -> DriverService:
    settings = get_settings()
    return DriverService(db, GeoDriverIndex(redis, settings), DriverLocationLog(redis, settings))


def build_payment_service(db: AsyncSession, redis: aioredis.Redis) -> PaymentService:
    return PaymentService(db, get_psp(), RideEventLog(redis, get_settings()), NotificationService(redis))


async def get_ride_service(
    db: AsyncSession = Depends(get_db), redis: aioredis.Redis = Depends(get_redis)
) -> RideService:
    return build_ride_service(db, redis)


async def get_trip_service(
    db: AsyncSession = Depends(get_db), redis: aioredis.Redis = Depends(get_redis)
) -> TripService:
    return build_trip_service(db, redis)


async def get_driver_service(
    db: AsyncSession = Depends(get_db), redis: aioredis.Redis = Depends(get_redis)
) -> DriverService:
    return build_driver_service(db, redis)


async def get_payment_service(
    db: AsyncSession = Depends(get_db), redis: aioredis.Redis = Depends(get_redis)
) -> PaymentService:
    return build_payment_service(db, redis)


async def get_rider_service(db: AsyncSession = Depends(get_db)) -> RiderService:
    return RiderService(db)
