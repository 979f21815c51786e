"""
Payments router: POST /v1/payments
"""
import logging

from fastapi import APIRouter, Depends, Header

from app.dependencies import get_payment_service
from app.schemas.schemas import PaymentRequest, PaymentResponse
from app.services.payment import PaymentService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/v1/payments", tags=["Payments"])


@router.post("", response_model=PaymentResponse)
async def create_payment(
    payload: PaymentRequest,
    service: PaymentService = Depends(get_payment_service),
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    """
    Pay for a completed trip.
    - Idempotent: repeated calls with the same key return the same payment.
    - Amount is always the server-side trip total.
    - A second payment for an already-paid trip is rejected (409).
    """
    payment = await service.process_payment(
        payload.trip_id,
        payload.payment_method.value,
        payload.idempotency_key or idempotency_key,
    )
    return PaymentResponse.from_payment(payment)
