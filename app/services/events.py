"""
Ordered, key-partitioned event log on Redis Streams.

Each topic is split into `event_partitions` streams named `{topic}:{n}`; an
entity key always hashes to the same stream, so every observer sees one
entity's events in emission order.

  * publish()        – awaited XADD; the returned entry id is the durability ack.
                       Lifecycle events go through here and failures propagate.
  * publish_nowait() – detached task, failures logged only (location pings).

Observers are Redis consumer groups: each group receives the full stream
independently of the others.
"""
import asyncio
import logging
import zlib
from typing import Generic, TypeVar

import redis.asyncio as aioredis
from pydantic import BaseModel
from redis.exceptions import ResponseError

from app.config import Settings, get_settings
from app.models.driver import Driver
from app.models.enums import RideEventType
from app.schemas.events import DriverLocationPing, RideEvent

logger = logging.getLogger(__name__)

EventT = TypeVar("EventT", bound=BaseModel)

# strong refs so fire-and-forget publishes are not garbage collected mid-flight
_background_tasks: set[asyncio.Task] = set()


async def drain_background_tasks() -> None:
    """Wait for outstanding fire-and-forget publishes (shutdown, tests)."""
    if _background_tasks:
        await asyncio.gather(*list(_background_tasks), return_exceptions=True)


def partition_for(key: str, partitions: int) -> int:
    return zlib.crc32(key.encode("utf-8")) % partitions


class EventLog(Generic[EventT]):
    def __init__(self, redis: aioredis.Redis, topic: str, partitions: int, event_model: type[EventT]):
        if partitions < 1:
            raise ValueError("partitions must be >= 1")
        self.redis = redis
        self.topic = topic
        self.partitions = partitions
        self.event_model = event_model

    @property
    def streams(self) -> list[str]:
        return [f"{self.topic}:{n}" for n in range(self.partitions)]

    def stream_for(self, key: str) -> str:
        return f"{self.topic}:{partition_for(key, self.partitions)}"

    async def publish(self, event: EventT) -> str:
        key = event.key  # type: ignore[attr-defined]
        stream = self.stream_for(key)
        entry_id = await self.redis.xadd(stream, {"key": key, "payload": event.model_dump_json()})
        logger.info("Published %s key=%s -> %s@%s", self.topic, key, stream, entry_id)
        return entry_id

    def publish_nowait(self, event: EventT) -> asyncio.Task:
        task = asyncio.create_task(self._publish_quietly(event))
        _background_tasks.add(task)
        task.add_done_callback(_background_tasks.discard)
        return task

    async def _publish_quietly(self, event: EventT) -> None:
        try:
            await self.publish(event)
        except Exception as exc:
            logger.warning("Dropped %s event key=%s: %s", self.topic, event.key, exc)  # type: ignore[attr-defined]

    async def read(self, key: str, count: int | None = None) -> list[EventT]:
        """All events for `key`, oldest first."""
        entries = await self.redis.xrange(self.stream_for(key), min="-", max="+")
        events = [
            self.event_model.model_validate_json(fields["payload"])
            for _, fields in entries
            if fields.get("key") == key
        ]
        return events[:count] if count is not None else events


class RideEventLog(EventLog[RideEvent]):
    def __init__(self, redis: aioredis.Redis, settings: Settings | None = None):
        settings = settings or get_settings()
        super().__init__(redis, settings.ride_events_topic, settings.event_partitions, RideEvent)

    async def emit(
        self,
        event_type: RideEventType,
        ride_id: str,
        rider_id: str,
        driver_id: str | None = None,
        **metadata,
    ) -> RideEvent:
        event = RideEvent(
            ride_id=ride_id,
            rider_id=rider_id,
            driver_id=driver_id,
            event_type=event_type,
            metadata=metadata,
        )
        await self.publish(event)
        return event


class DriverLocationLog(EventLog[DriverLocationPing]):
    def __init__(self, redis: aioredis.Redis, settings: Settings | None = None):
        settings = settings or get_settings()
        super().__init__(redis, settings.driver_locations_topic, settings.event_partitions, DriverLocationPing)

    def publish_location(self, driver: Driver) -> asyncio.Task | None:
        if not driver.has_location:
            logger.debug("Skipping location publish for driver %s: no coordinates yet", driver.id)
            return None
        return self.publish_nowait(
            DriverLocationPing(
                driver_id=driver.id,
                lat=driver.current_lat,
                lng=driver.current_lng,
                vehicle_tier=driver.vehicle_tier,
                status=driver.status,
            )
        )


class EventLogObserver(Generic[EventT]):
    """
    Independent reader of a topic. Each observer owns a consumer group, so
    several observers each get every event; within one key, order is kept.
    """

    def __init__(self, log: EventLog[EventT], group: str, consumer: str = "consumer-1"):
        self._log = log
        self._redis = log.redis
        self.group = group
        self.consumer = consumer

    async def start(self, from_beginning: bool = True) -> None:
        start_id = "0" if from_beginning else "$"
        for stream in self._log.streams:
            try:
                await self._redis.xgroup_create(stream, self.group, id=start_id, mkstream=True)
            except ResponseError as exc:
                if "BUSYGROUP" not in str(exc):
                    raise

    async def poll(self, count: int = 100, block_ms: int | None = None) -> list[EventT]:
        response = await self._redis.xreadgroup(
            self.group,
            self.consumer,
            {stream: ">" for stream in self._log.streams},
            count=count,
            block=block_ms,
        )
        events: list[EventT] = []
        for stream, entries in response or []:
            ids = []
            for entry_id, fields in entries:
                events.append(self._log.event_model.model_validate_json(fields["payload"]))
                ids.append(entry_id)
            if ids:
                await self._redis.xack(stream, self.group, *ids)
        return events
