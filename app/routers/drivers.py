"""
Drivers router: POST /v1/drivers (create), GET /v1/drivers, GET /v1/drivers/{id},
                 POST /v1/drivers/{id}/online | offline | location | accept | decline,
                 GET /v1/drivers/{id}/offers
"""
import logging

from fastapi import APIRouter, Depends, status

from app.dependencies import get_driver_service, get_ride_service
from app.schemas.schemas import (
    DeclineResponse, DriverCreateRequest, DriverResponse, LocationUpdateRequest,
    PendingOfferResponse, RideActionRequest, RideResponse,
)
from app.services.drivers import DriverService
from app.services.rides import RideService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/v1/drivers", tags=["Drivers"])


@router.post("", status_code=status.HTTP_201_CREATED, response_model=DriverResponse)
async def create_driver(payload: DriverCreateRequest, service: DriverService = Depends(get_driver_service)):
    """Register a new driver (starts OFFLINE)."""
    driver = await service.create_driver(payload.name, payload.email, payload.phone, payload.vehicle_tier.value)
    return DriverResponse.model_validate(driver)


@router.get("", response_model=list[DriverResponse])
async def list_drivers(service: DriverService = Depends(get_driver_service)):
    return [DriverResponse.model_validate(d) for d in await service.list_drivers()]


@router.get("/{driver_id}", response_model=DriverResponse)
async def get_driver(driver_id: str, service: DriverService = Depends(get_driver_service)):
    return DriverResponse.model_validate(await service.get_driver(driver_id))


@router.post("/{driver_id}/online", response_model=DriverResponse)
async def go_online(driver_id: str, service: DriverService = Depends(get_driver_service)):
    return DriverResponse.model_validate(await service.go_online(driver_id))


@router.post("/{driver_id}/offline", response_model=DriverResponse)
async def go_offline(driver_id: str, service: DriverService = Depends(get_driver_service)):
    return DriverResponse.model_validate(await service.go_offline(driver_id))


@router.post("/{driver_id}/location", response_model=DriverResponse)
async def update_location(
    driver_id: str,
    payload: LocationUpdateRequest,
    service: DriverService = Depends(get_driver_service),
):
    """
    High-frequency endpoint. Refreshes the driver's slot in the geo pool;
    the location ping is streamed without waiting for acknowledgement.
    """
    driver = await service.update_location(driver_id, payload.lat, payload.lng)
    return DriverResponse.model_validate(driver)


@router.post("/{driver_id}/accept", response_model=RideResponse)
async def accept_ride(
    driver_id: str,
    payload: RideActionRequest,
    service: RideService = Depends(get_ride_service),
):
    """Driver accepts the ride currently offered to them; creates the trip."""
    accepted = await service.accept_ride(driver_id, payload.ride_id)
    return RideResponse.from_ride(accepted.ride, trip_id=accepted.trip.id)


@router.post("/{driver_id}/decline", response_model=DeclineResponse)
async def decline_ride(
    driver_id: str,
    payload: RideActionRequest,
    service: RideService = Depends(get_ride_service),
):
    """Driver declines; the ride is re-matched among drivers not yet offered."""
    ride = await service.decline_ride(driver_id, payload.ride_id)
    return DeclineResponse(ride_id=ride.id, driver_id=driver_id, ride_status=ride.status)


@router.get("/{driver_id}/offers", response_model=list[PendingOfferResponse])
async def pending_offers(driver_id: str, service: RideService = Depends(get_ride_service)):
    offers = await service.list_pending_offers(driver_id)
    return [PendingOfferResponse.from_offer(offer) for offer in offers]
