import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import DuplicateRequestError, NotFoundError
from app.models.rider import Rider
from app.services.validation import require

logger = logging.getLogger(__name__)


class RiderService:
    def __init__(self, db: AsyncSession):
        self._db = db

    async def create_rider(self, name: str, email: str, phone: str) -> Rider:
        rider = Rider(name=require(name, "name"), email=require(email, "email"), phone=require(phone, "phone"))
        self._db.add(rider)
        try:
            await self._db.commit()
        except IntegrityError:
            await self._db.rollback()
            raise DuplicateRequestError("A rider with this email or phone already exists")
        logger.info("Rider %s registered", rider.id)
        return rider

    async def get_rider(self, rider_id: str) -> Rider:
        rider = await self._db.get(Rider, rider_id)
        if rider is None:
            raise NotFoundError("Rider", rider_id)
        return rider

    async def list_riders(self) -> list[Rider]:
        result = await self._db.execute(select(Rider).order_by(Rider.created_at))
        return list(result.scalars().all())
