"""
Ride lifecycle: request, accept, decline, cancel, pending offers.

Every mutating call locks the rows it changes (SELECT ... FOR UPDATE), checks
all transitions before touching anything, commits once, and only then emits
lifecycle events and notifications.
"""
import logging
import uuid
from dataclasses import dataclass
from typing import Any

from sqlalchemy import and_, exists, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_for_update
from app.exceptions import DuplicateRequestError, InvalidStateTransitionError, NotFoundError
from app.models.driver import Driver, utcnow
from app.models.enums import AssignmentStatus, DriverStatus, RideEventType, RideStatus, TripStatus
from app.models.ride import Ride, RideAssignment
from app.models.rider import Rider
from app.models.trip import Trip
from app.services import state_machine
from app.services.events import RideEventLog
from app.services.geo_index import GeoDriverIndex
from app.services.matching import MatchingEngine
from app.services.notifications import NotificationService
from app.services.pricing import SurgeEstimator
from app.services.validation import require, validate_coordinates, validate_payment_method, validate_tier

logger = logging.getLogger(__name__)


@dataclass
class RideRequest:
    rider_id: str
    pickup_lat: float
    pickup_lng: float
    dest_lat: float
    dest_lng: float
    vehicle_tier: str
    payment_method: str
    idempotency_key: str | None = None


@dataclass
class AcceptedRide:
    ride: Ride
    trip: Trip


class RideService:
    def __init__(
        self,
        db: AsyncSession,
        geo_index: GeoDriverIndex,
        surge: SurgeEstimator,
        matching: MatchingEngine,
        events: RideEventLog,
        notifier: NotificationService,
    ):
        self._db = db
        self._geo = geo_index
        self._surge = surge
        self._matching = matching
        self._events = events
        self._notifier = notifier

    async def create_ride(self, request: RideRequest) -> Ride:
        """
        1. Replay by idempotency key → stored ride, no side effects
        2. Rider exists and has no active ride
        3. Surge + estimated fare
        4. Persist REQUESTED, record demand, emit REQUESTED
        5. Run matching synchronously, return the post-matching state
        """
        self._validate(request)

        if request.idempotency_key:
            existing = await self._ride_by_idempotency_key(request.idempotency_key)
            if existing is not None:
                logger.info("Duplicate ride request with idempotency key: %s", request.idempotency_key)
                return existing

        # row lock serializes concurrent creates for the same rider
        rider = await get_for_update(self._db, Rider, request.rider_id)
        if rider is None:
            raise NotFoundError("Rider", request.rider_id)

        if await self._has_active_ride(rider.id):
            raise DuplicateRequestError("Rider already has an active ride")

        surge = await self._surge.get_surge_multiplier(request.pickup_lat, request.pickup_lng)
        estimated_fare = self._surge.estimate_fare(
            request.pickup_lat,
            request.pickup_lng,
            request.dest_lat,
            request.dest_lng,
            request.vehicle_tier,
            surge,
        )

        idempotency_key = request.idempotency_key or str(uuid.uuid4())
        ride = Ride(
            rider_id=rider.id,
            pickup_lat=request.pickup_lat,
            pickup_lng=request.pickup_lng,
            dest_lat=request.dest_lat,
            dest_lng=request.dest_lng,
            vehicle_tier=request.vehicle_tier,
            payment_method=request.payment_method,
            status=RideStatus.REQUESTED.value,
            surge_multiplier=surge,
            estimated_fare=estimated_fare,
            idempotency_key=idempotency_key,
        )
        self._db.add(ride)
        try:
            await self._db.commit()
        except IntegrityError:
            # lost a concurrent race on the same idempotency key
            await self._db.rollback()
            existing = await self._ride_by_idempotency_key(idempotency_key)
            if existing is None:
                raise
            return existing
        logger.info("Ride %s created for rider %s (surge=%s)", ride.id, rider.id, surge)

        await self._surge.record_demand(request.pickup_lat, request.pickup_lng)

        await self._events.emit(RideEventType.REQUESTED, ride.id, rider.id)

        return await self._matching.find_and_assign_driver(ride.id)

    async def get_ride(self, ride_id: str) -> Ride:
        ride = await self._db.get(Ride, ride_id)
        if ride is None:
            raise NotFoundError("Ride", ride_id)
        return ride

    async def trip_for_ride(self, ride_id: str) -> Trip | None:
        result = await self._db.execute(select(Trip).where(Trip.ride_id == ride_id))
        return result.scalar_one_or_none()

    async def accept_ride(self, driver_id: str, ride_id: str) -> AcceptedRide:
        """
        Driver accepts the live offer: assignment ACCEPTED, ride ACCEPTED,
        driver ON_TRIP and out of the pool, trip IN_PROGRESS at pickup.
        """
        ride = await get_for_update(self._db, Ride, ride_id)
        if ride is None:
            raise NotFoundError("Ride", ride_id)
        if ride.status != RideStatus.MATCHED.value:
            raise InvalidStateTransitionError("Ride", ride.status, RideStatus.ACCEPTED.value)

        assignment = await self._assignment_for_update(ride_id, driver_id)
        if assignment is None:
            raise NotFoundError("Assignment", f"{ride_id}+{driver_id}")
        state_machine.ASSIGNMENT.ensure(assignment.status, AssignmentStatus.ACCEPTED)

        driver = await get_for_update(self._db, Driver, driver_id)
        if driver is None:
            raise NotFoundError("Driver", driver_id)
        state_machine.DRIVER.ensure(driver.status, DriverStatus.ON_TRIP)

        now = utcnow()
        state_machine.ASSIGNMENT.apply(assignment, AssignmentStatus.ACCEPTED)
        assignment.responded_at = now

        state_machine.RIDE.apply(ride, RideStatus.ACCEPTED)
        ride.assigned_driver_id = driver.id

        state_machine.DRIVER.apply(driver, DriverStatus.ON_TRIP)

        trip = Trip(
            ride_id=ride.id,
            driver_id=driver.id,
            rider_id=ride.rider_id,
            status=TripStatus.IN_PROGRESS.value,
            started_at=now,
            start_lat=ride.pickup_lat,
            start_lng=ride.pickup_lng,
            surge_multiplier=ride.surge_multiplier,
        )
        self._db.add(trip)
        await self._db.commit()

        await self._geo.remove_availability(driver.id)
        await self._geo.unlock(driver.id, ride.id)

        await self._events.emit(RideEventType.DRIVER_ASSIGNED, ride.id, ride.rider_id, driver.id)
        await self._events.emit(RideEventType.TRIP_STARTED, ride.id, ride.rider_id, driver.id, trip_id=trip.id)

        await self._notifier.notify_rider(
            ride.rider_id,
            "RIDE_ACCEPTED",
            {
                "rideId": ride.id,
                "tripId": trip.id,
                "driverName": driver.name,
                "driverId": driver.id,
                "vehicleTier": driver.vehicle_tier,
            },
        )
        logger.info("Driver %s accepted ride %s. Trip %s created.", driver.id, ride.id, trip.id)
        return AcceptedRide(ride=ride, trip=trip)

    async def decline_ride(self, driver_id: str, ride_id: str) -> Ride:
        return await self._matching.handle_driver_decline(ride_id, driver_id)

    async def cancel_ride(self, ride_id: str, reason: str = "Cancelled by rider") -> Ride:
        ride = await get_for_update(self._db, Ride, ride_id)
        if ride is None:
            raise NotFoundError("Ride", ride_id)
        state_machine.RIDE.ensure(ride.status, RideStatus.CANCELLED)

        offer = await self._live_offer(ride_id)
        if offer is not None:
            state_machine.ASSIGNMENT.apply(offer, AssignmentStatus.DECLINED)
            offer.responded_at = utcnow()
        state_machine.RIDE.apply(ride, RideStatus.CANCELLED)
        await self._db.commit()

        if offer is not None:
            await self._geo.unlock(offer.driver_id, ride.id)
            await self._notifier.notify_driver(offer.driver_id, "RIDE_CANCELLED", {"rideId": ride.id})

        await self._events.emit(RideEventType.CANCELLED, ride.id, ride.rider_id, reason=reason)
        logger.info("Ride %s cancelled", ride_id)
        return ride

    async def list_pending_offers(self, driver_id: str) -> list[dict[str, Any]]:
        """Offers still awaiting this driver's answer (ride still MATCHED)."""
        driver = await self._db.get(Driver, driver_id)
        if driver is None:
            raise NotFoundError("Driver", driver_id)

        result = await self._db.execute(
            select(RideAssignment, Ride)
            .join(Ride, Ride.id == RideAssignment.ride_id)
            .where(
                RideAssignment.driver_id == driver_id,
                RideAssignment.status == AssignmentStatus.OFFERED.value,
                Ride.status == RideStatus.MATCHED.value,
            )
            .order_by(RideAssignment.offered_at)
        )
        return [
            {
                "type": "RIDE_OFFER",
                "ride_id": ride.id,
                "rider_id": ride.rider_id,
                "pickup_lat": ride.pickup_lat,
                "pickup_lng": ride.pickup_lng,
                "dest_lat": ride.dest_lat,
                "dest_lng": ride.dest_lng,
                "vehicle_tier": ride.vehicle_tier,
                "estimated_fare": ride.estimated_fare,
                "surge_multiplier": ride.surge_multiplier,
                "assignment_status": assignment.status,
                "offered_at": assignment.offered_at,
            }
            for assignment, ride in result.all()
        ]

    async def ride_events(self, ride_id: str):
        await self.get_ride(ride_id)
        return await self._events.read(ride_id)

    # ------------------------------------------------------------------

    @staticmethod
    def _validate(request: RideRequest) -> None:
        require(request.rider_id, "rider_id")
        validate_coordinates(request.pickup_lat, request.pickup_lng, "pickup")
        validate_coordinates(request.dest_lat, request.dest_lng, "destination")
        request.vehicle_tier = validate_tier(request.vehicle_tier)
        request.payment_method = validate_payment_method(request.payment_method)

    async def _ride_by_idempotency_key(self, key: str) -> Ride | None:
        result = await self._db.execute(select(Ride).where(Ride.idempotency_key == key))
        return result.scalar_one_or_none()

    async def _has_active_ride(self, rider_id: str) -> bool:
        # ACCEPTED counts as active until its trip is COMPLETED
        trip_open = ~exists().where(Trip.ride_id == Ride.id, Trip.status == TripStatus.COMPLETED.value)
        stmt = select(
            exists().where(
                Ride.rider_id == rider_id,
                or_(
                    Ride.status.in_(state_machine.ACTIVE_RIDE_STATUSES),
                    and_(Ride.status == RideStatus.ACCEPTED.value, trip_open),
                ),
            )
        )
        return bool((await self._db.execute(stmt)).scalar())

    async def _assignment_for_update(self, ride_id: str, driver_id: str) -> RideAssignment | None:
        result = await self._db.execute(
            select(RideAssignment)
            .where(RideAssignment.ride_id == ride_id, RideAssignment.driver_id == driver_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _live_offer(self, ride_id: str) -> RideAssignment | None:
        result = await self._db.execute(
            select(RideAssignment)
            .where(
                RideAssignment.ride_id == ride_id,
                RideAssignment.status == AssignmentStatus.OFFERED.value,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()
