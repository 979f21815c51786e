"""
Rides router: POST /v1/rides, GET /v1/rides/{id}, POST /v1/rides/{id}/cancel,
               GET /v1/rides/{id}/events
"""
import logging

from fastapi import APIRouter, Depends, Header, status

from app.dependencies import get_ride_service
from app.schemas.schemas import RideCreateRequest, RideEventResponse, RideResponse
from app.services.rides import RideRequest, RideService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/v1/rides", tags=["Rides"])


@router.post("", status_code=status.HTTP_201_CREATED, response_model=RideResponse)
async def create_ride(
    payload: RideCreateRequest,
    service: RideService = Depends(get_ride_service),
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    """
    Request a ride. Matching runs before the response is returned, so the
    status is already MATCHED or NO_DRIVERS_AVAILABLE. Replays with the same
    idempotency key (body or header) return the original ride.
    """
    ride = await service.create_ride(
        RideRequest(
            rider_id=payload.rider_id,
            pickup_lat=payload.pickup_lat,
            pickup_lng=payload.pickup_lng,
            dest_lat=payload.dest_lat,
            dest_lng=payload.dest_lng,
            vehicle_tier=payload.vehicle_tier.value,
            payment_method=payload.payment_method.value,
            idempotency_key=payload.idempotency_key or idempotency_key,
        )
    )
    return RideResponse.from_ride(ride)


@router.get("/{ride_id}", response_model=RideResponse)
async def get_ride(ride_id: str, service: RideService = Depends(get_ride_service)):
    ride = await service.get_ride(ride_id)
    trip = await service.trip_for_ride(ride_id)
    return RideResponse.from_ride(ride, trip_id=trip.id if trip else None)


@router.post("/{ride_id}/cancel", response_model=RideResponse)
async def cancel_ride(ride_id: str, service: RideService = Depends(get_ride_service)):
    ride = await service.cancel_ride(ride_id)
    return RideResponse.from_ride(ride)


@router.get("/{ride_id}/events", response_model=list[RideEventResponse])
async def ride_events(ride_id: str, service: RideService = Depends(get_ride_service)):
    """Lifecycle events for the ride, in emission order."""
    events = await service.ride_events(ride_id)
    return [RideEventResponse(**event.model_dump()) for event in events]
