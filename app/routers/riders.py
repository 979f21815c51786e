"""
Riders router: POST /v1/riders, GET /v1/riders, GET /v1/riders/{id}
"""
from fastapi import APIRouter, Depends, status

from app.dependencies import get_rider_service
from app.schemas.schemas import RiderCreateRequest, RiderResponse
from app.services.riders import RiderService

router = APIRouter(prefix="/v1/riders", tags=["Riders"])


@router.post("", status_code=status.HTTP_201_CREATED, response_model=RiderResponse)
async def create_rider(payload: RiderCreateRequest, service: RiderService = Depends(get_rider_service)):
    rider = await service.create_rider(payload.name, payload.email, payload.phone)
    return RiderResponse.model_validate(rider)


@router.get("", response_model=list[RiderResponse])
async def list_riders(service: RiderService = Depends(get_rider_service)):
    return [RiderResponse.model_validate(r) for r in await service.list_riders()]


@router.get("/{rider_id}", response_model=RiderResponse)
async def get_rider(rider_id: str, service: RiderService = Depends(get_rider_service)):
    return RiderResponse.model_validate(await service.get_rider(rider_id))
