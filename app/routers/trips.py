"""
Trips router: POST /v1/trips/{id}/end, GET /v1/trips/{id}
"""
import logging

from fastapi import APIRouter, Depends

from app.dependencies import get_trip_service
from app.schemas.schemas import TripEndRequest, TripResponse
from app.services.trips import TripService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/v1/trips", tags=["Trips"])


@router.post("/{trip_id}/end", response_model=TripResponse)
async def end_trip(
    trip_id: str,
    payload: TripEndRequest,
    service: TripService = Depends(get_trip_service),
):
    """End an IN_PROGRESS trip at the drop-off point and finalize the fare."""
    trip = await service.end_trip(trip_id, payload.end_lat, payload.end_lng)
    return TripResponse.from_trip(trip)


@router.get("/{trip_id}", response_model=TripResponse)
async def get_trip(trip_id: str, service: TripService = Depends(get_trip_service)):
    return TripResponse.from_trip(await service.get_trip(trip_id))
