"""
Geo-indexed pool of available drivers, backed by Redis.

Keys:
  driver:locations:{tier} – GEO set of last reported positions, one per tier
  driver:available:{id}   – tier, expires after `availability_ttl_seconds`;
                            a driver that stops reporting drops out of search
  driver:lock:{id}        – ride id holding the offer lease (SET NX EX)

Absence is never an error here: every lookup returns an empty/False result.
"""
import logging

import redis.asyncio as aioredis

from app.config import Settings, get_settings
from app.models.enums import VehicleTier

logger = logging.getLogger(__name__)

DRIVER_LOCATIONS_PREFIX = "driver:locations:"
DRIVER_AVAILABLE_PREFIX = "driver:available:"
DRIVER_LOCK_PREFIX = "driver:lock:"

# Delete the lock only while it is still held by the given ride.
_RELEASE_LOCK = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
end
return 0
"""

# Drop a GEO member only if its availability key is still gone.
_PRUNE_STALE = """
if redis.call('exists', KEYS[2]) == 0 then
    return redis.call('zrem', KEYS[1], ARGV[1])
end
return 0
"""


def locations_key(tier: str) -> str:
    return f"{DRIVER_LOCATIONS_PREFIX}{tier}"


class GeoDriverIndex:
    def __init__(self, redis: aioredis.Redis, settings: Settings | None = None):
        self._redis = redis
        self._settings = settings or get_settings()
        self._release_lock = redis.register_script(_RELEASE_LOCK)
        self._prune_stale = redis.register_script(_PRUNE_STALE)

    async def upsert(self, driver_id: str, lat: float, lng: float, tier: str) -> None:
        """Add / update driver position and reset the availability TTL."""
        pipe = self._redis.pipeline(transaction=True)
        for other in VehicleTier:
            if other.value != tier:
                pipe.zrem(locations_key(other.value), driver_id)
        # Redis GEO takes (longitude, latitude)
        pipe.geoadd(locations_key(tier), [lng, lat, driver_id])
        pipe.set(f"{DRIVER_AVAILABLE_PREFIX}{driver_id}", tier, ex=self._settings.availability_ttl_seconds)
        await pipe.execute()
        logger.debug("Indexed driver=%s at (%s, %s) tier=%s", driver_id, lat, lng, tier)

    async def nearby(self, lat: float, lng: float, radius_km: float, tier: str) -> list[str]:
        """
        Driver ids within `radius_km`, nearest first, live and of the requested
        tier. Members whose availability key has lapsed are pruned from the
        GEO set and the search is repeated, so silent drivers never crowd
        out live ones.
        """
        limit = self._settings.nearby_max_results
        while True:
            results = await self._redis.geosearch(
                locations_key(tier),
                longitude=lng,
                latitude=lat,
                radius=radius_km,
                unit="km",
                sort="ASC",
                count=limit,
            )
            if not results:
                return []

            tiers = await self._redis.mget([f"{DRIVER_AVAILABLE_PREFIX}{driver_id}" for driver_id in results])
            candidates = []
            pruned = 0
            for driver_id, live_tier in zip(results, tiers):
                if live_tier is None:
                    pruned += await self._prune(tier, driver_id)
                elif live_tier == tier:
                    candidates.append(driver_id)

            if not pruned or len(results) < limit:
                break
            logger.debug("Pruned %d stale %s drivers, searching again", pruned, tier)

        logger.debug(
            "Found %d live %s drivers within %skm of (%s, %s)", len(candidates), tier, radius_km, lat, lng
        )
        return candidates

    async def try_lock(self, driver_id: str, ride_id: str, lease_seconds: int | None = None) -> bool:
        """Claim the driver for `ride_id`; one atomic SET NX EX, never check-then-set."""
        lease = lease_seconds or self._settings.driver_lock_lease_seconds
        acquired = await self._redis.set(f"{DRIVER_LOCK_PREFIX}{driver_id}", ride_id, nx=True, ex=lease)
        logger.debug("Lock attempt driver=%s ride=%s: %s", driver_id, ride_id, bool(acquired))
        return bool(acquired)

    async def unlock(self, driver_id: str, ride_id: str) -> bool:
        """Release the lock if `ride_id` still holds it. Idempotent."""
        released = bool(await self._release_lock(keys=[f"{DRIVER_LOCK_PREFIX}{driver_id}"], args=[ride_id]))
        if not released:
            logger.debug("Lock on driver=%s not held by ride=%s, left as is", driver_id, ride_id)
        return released

    async def lock_holder(self, driver_id: str) -> str | None:
        return await self._redis.get(f"{DRIVER_LOCK_PREFIX}{driver_id}")

    async def remove_availability(self, driver_id: str) -> None:
        """Evict the driver from the pool (offline / trip start)."""
        pipe = self._redis.pipeline(transaction=True)
        pipe.delete(f"{DRIVER_AVAILABLE_PREFIX}{driver_id}")
        for tier in VehicleTier:
            pipe.zrem(locations_key(tier.value), driver_id)
        await pipe.execute()
        logger.debug("Removed driver=%s from availability pool", driver_id)

    async def _prune(self, tier: str, driver_id: str) -> int:
        return int(
            await self._prune_stale(
                keys=[locations_key(tier), f"{DRIVER_AVAILABLE_PREFIX}{driver_id}"], args=[driver_id]
            )
        )
