"""
Shared fixtures: in-process Redis (fakeredis), a throwaway SQLite store per
test, fully wired services and an HTTP client bound to the ASGI app.
"""
import itertools

import fakeredis
import pytest
import pytest_asyncio
from fastapi import Depends
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import app.models  # noqa: F401  register mappers
from app.database import Base, get_db
from app.dependencies import build_driver_service, build_ride_service, build_trip_service, get_payment_service
from app.redis_client import get_redis
from app.services.events import RideEventLog, drain_background_tasks
from app.services.notifications import NotificationService
from app.services.payment import PaymentService, PSPStub
from app.services.riders import RiderService

_seq = itertools.count(1)


@pytest_asyncio.fixture
async def redis():
    client = fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)
    yield client
    await drain_background_tasks()
    await client.aclose()


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'dispatch.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def psp():
    return PSPStub(success_rate=1.0)


@pytest.fixture
def rider_service(db):
    return RiderService(db)


@pytest.fixture
def driver_service(db, redis):
    return build_driver_service(db, redis)


@pytest.fixture
def ride_service(db, redis):
    return build_ride_service(db, redis)


@pytest.fixture
def trip_service(db, redis):
    return build_trip_service(db, redis)


@pytest.fixture
def payment_service(db, redis, psp):
    return PaymentService(db, psp, RideEventLog(redis), NotificationService(redis))


@pytest.fixture
def make_rider(rider_service):
    async def _make(name: str = "Asha Rao"):
        n = next(_seq)
        return await rider_service.create_rider(name, f"rider{n}@example.com", f"98000{n:05d}")

    return _make


@pytest.fixture
def make_driver(driver_service):
    """Registered driver; placed and online when a position is given."""

    async def _make(lat: float | None = None, lng: float | None = None, tier: str = "SEDAN", online: bool = True):
        n = next(_seq)
        driver = await driver_service.create_driver(f"Driver {n}", f"driver{n}@example.com", f"97000{n:05d}", tier)
        if lat is not None:
            driver = await driver_service.update_location(driver.id, lat, lng)
        if online:
            driver = await driver_service.go_online(driver.id)
        return driver

    return _make


@pytest_asyncio.fixture
async def client(session_factory, redis, psp):
    from app.main import app

    async def _db():
        async with session_factory() as session:
            yield session

    async def _redis():
        return redis

    async def _payments(db: AsyncSession = Depends(get_db)):
        return PaymentService(db, psp, RideEventLog(redis), NotificationService(redis))

    app.dependency_overrides[get_db] = _db
    app.dependency_overrides[get_redis] = _redis
    app.dependency_overrides[get_payment_service] = _payments
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()
