"""
Trip payments through the PSP adapter.

The PSP here is a stub honouring the provider idempotency contract: the same
idempotency key always yields the same result. Nothing retries a charge.
"""
import logging
import random
import uuid
from decimal import Decimal
from functools import lru_cache

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.database import get_for_update
from app.exceptions import DuplicateRequestError, InvalidStateTransitionError, NotFoundError, ValidationError
from app.models.enums import PaymentStatus, RideEventType, TripStatus
from app.models.payment import Payment
from app.models.trip import Trip
from app.services import state_machine
from app.services.events import RideEventLog
from app.services.notifications import NotificationService
from app.services.validation import require, validate_payment_method

logger = logging.getLogger(__name__)
settings = get_settings()


class PSPError(Exception):
    pass


class PSPStub:
    """In-memory payment provider; `success_rate` of charges succeed."""

    def __init__(self, success_rate: float = 0.9, rng: random.Random | None = None):
        self.success_rate = success_rate
        self._rng = rng or random.Random()
        self._processed: dict[str, dict] = {}

    async def charge(self, idempotency_key: str, amount: Decimal, currency: str) -> dict:
        """Returns: {"status": "SUCCESS"/"FAILED", "psp_ref": str | None}"""
        if idempotency_key in self._processed:
            logger.info("PSP: duplicate charge with key %s, returning stored result", idempotency_key)
            return self._processed[idempotency_key]

        if amount <= 0:
            raise PSPError("Amount must be positive")

        if self._rng.random() < self.success_rate:
            result = {"status": "SUCCESS", "psp_ref": f"PSP-{uuid.uuid4().hex[:12].upper()}"}
            logger.info("PSP charge success: ref=%s amount=%s %s", result["psp_ref"], amount, currency)
        else:
            result = {"status": "FAILED", "psp_ref": None, "error": "Insufficient funds"}
            logger.info("PSP charge failed for key %s", idempotency_key)

        self._processed[idempotency_key] = result
        return result


@lru_cache
def get_psp() -> PSPStub:
    return PSPStub(success_rate=settings.psp_success_rate)


class PaymentService:
    def __init__(self, db: AsyncSession, psp: PSPStub, events: RideEventLog, notifier: NotificationService):
        self._db = db
        self._psp = psp
        self._events = events
        self._notifier = notifier

    async def process_payment(self, trip_id: str, payment_method: str, idempotency_key: str | None) -> Payment:
        """
        1. Replay by idempotency key → stored payment
        2. Trip must be COMPLETED; an already-paid trip is a duplicate
        3. PROCESSING payment for the server-side fare, charge PSP
        4. SUCCESS → PAYMENT_COMPLETED event; rider notified either way
        """
        require(trip_id, "trip_id")
        if not idempotency_key:
            raise ValidationError("Idempotency key is required for payments")
        payment_method = validate_payment_method(payment_method)

        existing = await self._by_idempotency_key(idempotency_key)
        if existing is not None:
            logger.info("Duplicate payment request with key: %s", idempotency_key)
            return existing

        trip = await get_for_update(self._db, Trip, trip_id)
        if trip is None:
            raise NotFoundError("Trip", trip_id)
        if trip.status != TripStatus.COMPLETED.value or trip.total_fare is None:
            raise InvalidStateTransitionError("Trip", trip.status, "PAID")

        paid = await self._db.execute(
            select(Payment.id).where(Payment.trip_id == trip.id, Payment.status == PaymentStatus.SUCCESS.value)
        )
        if paid.first() is not None:
            raise DuplicateRequestError("Payment already processed for this trip")

        payment = Payment(
            trip_id=trip.id,
            rider_id=trip.rider_id,
            amount=trip.total_fare,
            currency=settings.currency,
            payment_method=payment_method,
            status=PaymentStatus.PENDING.value,
            idempotency_key=idempotency_key,
        )
        state_machine.PAYMENT.apply(payment, PaymentStatus.PROCESSING)
        self._db.add(payment)
        try:
            await self._db.commit()
        except IntegrityError:
            await self._db.rollback()
            existing = await self._by_idempotency_key(idempotency_key)
            if existing is None:
                raise
            return existing

        psp_result = await self._psp.charge(idempotency_key, Decimal(str(payment.amount)), payment.currency)

        if psp_result["status"] == PaymentStatus.SUCCESS.value:
            state_machine.PAYMENT.apply(payment, PaymentStatus.SUCCESS)
            payment.psp_transaction_id = psp_result["psp_ref"]
        else:
            state_machine.PAYMENT.apply(payment, PaymentStatus.FAILED)
        await self._db.commit()

        if payment.status == PaymentStatus.SUCCESS.value:
            await self._events.emit(
                RideEventType.PAYMENT_COMPLETED,
                trip.ride_id,
                trip.rider_id,
                trip.driver_id,
                paymentId=payment.id,
                amount=str(payment.amount),
                currency=payment.currency,
            )

        await self._notifier.notify_rider(
            trip.rider_id,
            f"PAYMENT_{payment.status}",
            {"paymentId": payment.id, "amount": str(payment.amount), "status": payment.status},
        )
        logger.info("Payment %s for trip %s: status %s", payment.id, trip.id, payment.status)
        return payment

    async def _by_idempotency_key(self, key: str) -> Payment | None:
        result = await self._db.execute(select(Payment).where(Payment.idempotency_key == key))
        return result.scalar_one_or_none()
