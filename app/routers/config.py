"""
Config router: GET /v1/config/vehicle-tiers, GET /v1/config/payment-methods
"""
from fastapi import APIRouter

from app.models.enums import PaymentMethod, VehicleTier
from app.services.pricing import MINIMUM_FARE, RATE_PER_KM

router = APIRouter(prefix="/v1/config", tags=["Config"])


@router.get("/vehicle-tiers")
async def vehicle_tiers():
    return [
        {"tier": tier.value, "rate_per_km": float(RATE_PER_KM[tier.value]), "minimum_fare": float(MINIMUM_FARE)}
        for tier in VehicleTier
    ]


@router.get("/payment-methods")
async def payment_methods():
    return [method.value for method in PaymentMethod]
