"""
Push-notification sink. Riders listen on `notifications:rider:{id}`, drivers
on `notifications:driver:{id}`. Delivery is best-effort: a failed publish is
logged and never fails the calling operation.
"""
import json
import logging
from typing import Any

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)

RIDER_CHANNEL_PREFIX = "notifications:rider:"
DRIVER_CHANNEL_PREFIX = "notifications:driver:"


class NotificationService:
    def __init__(self, redis: aioredis.Redis):
        self._redis = redis

    async def notify_rider(self, rider_id: str, event_type: str, payload: dict[str, Any]) -> None:
        await self._send(f"{RIDER_CHANNEL_PREFIX}{rider_id}", event_type, payload)

    async def notify_driver(self, driver_id: str, event_type: str, payload: dict[str, Any]) -> None:
        await self._send(f"{DRIVER_CHANNEL_PREFIX}{driver_id}", event_type, payload)

    async def _send(self, channel: str, event_type: str, payload: dict[str, Any]) -> None:
        message = json.dumps({"eventType": event_type, "payload": payload}, default=str)
        try:
            await self._redis.publish(channel, message)
        except Exception as exc:
            logger.warning("Notification %s to %s dropped: %s", event_type, channel, exc)
            return
        logger.debug("Notified %s with event: %s", channel, event_type)
