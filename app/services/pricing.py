"""
Surge pricing and fare calculation service.

The world is bucketed into ~1.1 km grid cells (lat/lng truncated to two
decimals). Each cell carries a short-lived demand counter and a cached
multiplier that is recomputed only when demand is recorded, so a cell's surge
is as fresh as its last ride request.
"""
import logging
from decimal import Decimal, ROUND_HALF_UP
from math import radians, sin, cos, sqrt, atan2

import redis.asyncio as aioredis

from app.config import Settings, get_settings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Tier rates (INR per km)
# ---------------------------------------------------------------------------
RATE_PER_KM: dict[str, Decimal] = {
    "AUTO": Decimal("8.00"),
    "SEDAN": Decimal("12.00"),
    "SUV": Decimal("18.00"),
}
MINIMUM_FARE = Decimal("30.00")
EARTH_RADIUS_KM = 6371

# demand count strictly above threshold -> multiplier, checked top-down
SURGE_LADDER: list[tuple[int, Decimal]] = [
    (20, Decimal("2.0")),
    (10, Decimal("1.5")),
    (5, Decimal("1.2")),
]
NO_SURGE = Decimal("1.0")

SURGE_PREFIX = "surge:"
DEMAND_PREFIX = "demand:"


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in km."""
    phi1, phi2 = radians(lat1), radians(lat2)
    dphi = radians(lat2 - lat1)
    dlambda = radians(lng2 - lng1)
    a = sin(dphi / 2) ** 2 + cos(phi1) * cos(phi2) * sin(dlambda / 2) ** 2
    return 2 * EARTH_RADIUS_KM * atan2(sqrt(a), sqrt(1 - a))


def calculate_fare(tier: str, distance_km: float, surge_multiplier: Decimal | float) -> Decimal:
    """
    rate[tier] * distance * surge, floored at MINIMUM_FARE, 2dp half-up.
    Unknown tiers are priced as SEDAN.
    """
    rate = RATE_PER_KM.get(tier, RATE_PER_KM["SEDAN"])
    fare = rate * Decimal(str(distance_km)) * Decimal(str(surge_multiplier))
    fare = max(fare, MINIMUM_FARE)
    return fare.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def multiplier_for_demand(demand: int) -> Decimal:
    for threshold, multiplier in SURGE_LADDER:
        if demand > threshold:
            return multiplier
    return NO_SURGE


def grid_cell(lat: float, lng: float) -> str:
    """~1.1km cell key; int() truncates toward zero."""
    return f"{int(lat * 100)}:{int(lng * 100)}"


class SurgeEstimator:
    def __init__(self, redis: aioredis.Redis, settings: Settings | None = None):
        self._redis = redis
        self._settings = settings or get_settings()

    async def get_surge_multiplier(self, lat: float, lng: float) -> Decimal:
        """
        Cached multiplier for the cell, or 1.0 (which is then cached).
        Does not look at the demand counter.
        """
        surge_key = f"{SURGE_PREFIX}{grid_cell(lat, lng)}"
        cached = await self._redis.get(surge_key)
        if cached is not None:
            return Decimal(cached)

        await self._redis.set(surge_key, str(NO_SURGE), ex=self._settings.surge_cache_ttl_seconds)
        return NO_SURGE

    async def record_demand(self, lat: float, lng: float) -> Decimal:
        """Count one ride request in the cell and refresh its cached multiplier."""
        cell = grid_cell(lat, lng)
        demand_key = f"{DEMAND_PREFIX}{cell}"

        pipe = self._redis.pipeline(transaction=True)
        pipe.incr(demand_key)
        pipe.expire(demand_key, self._settings.demand_window_seconds)
        demand, _ = await pipe.execute()

        surge = multiplier_for_demand(int(demand))
        await self._redis.set(
            f"{SURGE_PREFIX}{cell}", str(surge), ex=self._settings.surge_cache_ttl_seconds
        )
        logger.debug("Surge for cell %s: %s (demand: %s)", cell, surge, demand)
        return surge

    async def demand(self, lat: float, lng: float) -> int:
        raw = await self._redis.get(f"{DEMAND_PREFIX}{grid_cell(lat, lng)}")
        return int(raw or 0)

    def estimate_fare(
        self,
        pickup_lat: float,
        pickup_lng: float,
        dest_lat: float,
        dest_lng: float,
        tier: str,
        surge_multiplier: Decimal,
    ) -> Decimal:
        distance_km = haversine_km(pickup_lat, pickup_lng, dest_lat, dest_lng)
        return calculate_fare(tier, distance_km, surge_multiplier)
