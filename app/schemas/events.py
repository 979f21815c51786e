"""
Event payloads carried on the event log.

RideEvent   – lifecycle transitions, keyed by ride_id.
DriverLocationPing – GPS updates, keyed by driver_id.
"""
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field

from app.models.enums import RideEventType


def _now() -> datetime:
    return datetime.now(timezone.utc)


class RideEvent(BaseModel):
    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    ride_id: str
    rider_id: str
    driver_id: Optional[str] = None  # None for REQUESTED / NO_DRIVERS
    event_type: RideEventType
    timestamp: datetime = Field(default_factory=_now)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def key(self) -> str:
        return self.ride_id


class DriverLocationPing(BaseModel):
    driver_id: str
    lat: float
    lng: float
    vehicle_tier: str
    status: str
    timestamp: datetime = Field(default_factory=_now)

    @property
    def key(self) -> str:
        return self.driver_id
