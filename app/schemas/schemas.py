from datetime import datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field

from app.models.enums import (
    AssignmentStatus,
    DriverStatus,
    PaymentMethod,
    PaymentStatus,
    RideEventType,
    RideStatus,
    TripStatus,
    VehicleTier,
)


def _money(value: Decimal | None) -> Optional[float]:
    return float(value) if value is not None else None


# ---------------------------------------------------------------------------
# Rider schemas
# ---------------------------------------------------------------------------

class RiderCreateRequest(BaseModel):
    name: str = Field(..., min_length=2, max_length=255)
    email: str = Field(..., min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$")
    phone: str = Field(..., min_length=10, max_length=20)


class RiderResponse(BaseModel):
    id: str
    name: str
    email: str
    phone: str
    created_at: datetime

    model_config = {"from_attributes": True}


# ---------------------------------------------------------------------------
# Ride schemas
# ---------------------------------------------------------------------------

class RideCreateRequest(BaseModel):
    rider_id: str = Field(..., min_length=1)
    pickup_lat: float = Field(..., ge=-90, le=90)
    pickup_lng: float = Field(..., ge=-180, le=180)
    dest_lat: float = Field(..., ge=-90, le=90)
    dest_lng: float = Field(..., ge=-180, le=180)
    vehicle_tier: VehicleTier = VehicleTier.SEDAN
    payment_method: PaymentMethod
    idempotency_key: Optional[str] = Field(default=None, max_length=255)


class RideResponse(BaseModel):
    id: str
    rider_id: str
    pickup_lat: float
    pickup_lng: float
    dest_lat: float
    dest_lng: float
    vehicle_tier: VehicleTier
    payment_method: PaymentMethod
    status: RideStatus
    surge_multiplier: float
    estimated_fare: Optional[float] = None
    assigned_driver_id: Optional[str] = None
    trip_id: Optional[str] = None
    created_at: datetime

    @classmethod
    def from_ride(cls, ride, trip_id: Optional[str] = None) -> "RideResponse":
        return cls(
            id=ride.id,
            rider_id=ride.rider_id,
            pickup_lat=ride.pickup_lat,
            pickup_lng=ride.pickup_lng,
            dest_lat=ride.dest_lat,
            dest_lng=ride.dest_lng,
            vehicle_tier=ride.vehicle_tier,
            payment_method=ride.payment_method,
            status=ride.status,
            surge_multiplier=float(ride.surge_multiplier),
            estimated_fare=_money(ride.estimated_fare),
            assigned_driver_id=ride.assigned_driver_id,
            trip_id=trip_id,
            created_at=ride.created_at,
        )


class RideEventResponse(BaseModel):
    event_id: str
    ride_id: str
    rider_id: str
    driver_id: Optional[str] = None
    event_type: RideEventType
    timestamp: datetime
    metadata: dict


# ---------------------------------------------------------------------------
# Driver schemas
# ---------------------------------------------------------------------------

class DriverCreateRequest(BaseModel):
    name: str = Field(..., min_length=2, max_length=255)
    email: str = Field(..., min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$")
    phone: str = Field(..., min_length=10, max_length=20)
    vehicle_tier: VehicleTier = VehicleTier.SEDAN


class DriverResponse(BaseModel):
    id: str
    name: str
    vehicle_tier: VehicleTier
    status: DriverStatus
    current_lat: Optional[float] = None
    current_lng: Optional[float] = None

    model_config = {"from_attributes": True}


class LocationUpdateRequest(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    timestamp: Optional[datetime] = None


class RideActionRequest(BaseModel):
    ride_id: str = Field(..., min_length=1)


class DeclineResponse(BaseModel):
    ride_id: str
    driver_id: str
    acknowledged: bool = True
    ride_status: RideStatus


class PendingOfferResponse(BaseModel):
    type: str = "RIDE_OFFER"
    ride_id: str
    rider_id: str
    pickup_lat: float
    pickup_lng: float
    dest_lat: float
    dest_lng: float
    vehicle_tier: VehicleTier
    estimated_fare: Optional[float] = None
    surge_multiplier: float
    assignment_status: AssignmentStatus
    offered_at: datetime

    @classmethod
    def from_offer(cls, offer: dict) -> "PendingOfferResponse":
        return cls(
            **{
                **offer,
                "estimated_fare": _money(offer["estimated_fare"]),
                "surge_multiplier": float(offer["surge_multiplier"]),
            }
        )


# ---------------------------------------------------------------------------
# Trip schemas
# ---------------------------------------------------------------------------

class TripEndRequest(BaseModel):
    end_lat: float = Field(..., ge=-90, le=90)
    end_lng: float = Field(..., ge=-180, le=180)


class TripResponse(BaseModel):
    id: str
    ride_id: str
    driver_id: str
    rider_id: str
    status: TripStatus
    start_lat: float
    start_lng: float
    end_lat: Optional[float] = None
    end_lng: Optional[float] = None
    started_at: datetime
    ended_at: Optional[datetime] = None
    distance_km: Optional[float] = None
    base_fare: Optional[float] = None
    surge_multiplier: float
    total_fare: Optional[float] = None
    currency: str = "INR"

    @classmethod
    def from_trip(cls, trip) -> "TripResponse":
        return cls(
            id=trip.id,
            ride_id=trip.ride_id,
            driver_id=trip.driver_id,
            rider_id=trip.rider_id,
            status=trip.status,
            start_lat=trip.start_lat,
            start_lng=trip.start_lng,
            end_lat=trip.end_lat,
            end_lng=trip.end_lng,
            started_at=trip.started_at,
            ended_at=trip.ended_at,
            distance_km=_money(trip.distance_km),
            base_fare=_money(trip.base_fare),
            surge_multiplier=float(trip.surge_multiplier),
            total_fare=_money(trip.total_fare),
        )


# ---------------------------------------------------------------------------
# Payment schemas
# ---------------------------------------------------------------------------

class PaymentRequest(BaseModel):
    trip_id: str = Field(..., min_length=1)
    payment_method: PaymentMethod
    idempotency_key: Optional[str] = Field(default=None, max_length=255)


class PaymentResponse(BaseModel):
    payment_id: str
    trip_id: str
    status: PaymentStatus
    psp_ref: Optional[str] = None
    amount: float
    currency: str
    payment_method: PaymentMethod

    @classmethod
    def from_payment(cls, payment) -> "PaymentResponse":
        return cls(
            payment_id=payment.id,
            trip_id=payment.trip_id,
            status=payment.status,
            psp_ref=payment.psp_transaction_id,
            amount=float(payment.amount),
            currency=payment.currency,
            payment_method=payment.payment_method,
        )
