import uuid
from datetime import datetime
from decimal import Decimal
from sqlalchemy import String, Float, Numeric, DateTime, ForeignKey, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column
from app.database import Base
from app.models.driver import utcnow


class Ride(Base):
    __tablename__ = "rides"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    rider_id: Mapped[str] = mapped_column(String, ForeignKey("riders.id"), nullable=False, index=True)
    assigned_driver_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("drivers.id"), nullable=True, index=True
    )

    pickup_lat: Mapped[float] = mapped_column(Float, nullable=False)
    pickup_lng: Mapped[float] = mapped_column(Float, nullable=False)
    dest_lat: Mapped[float] = mapped_column(Float, nullable=False)
    dest_lng: Mapped[float] = mapped_column(Float, nullable=False)

    vehicle_tier: Mapped[str] = mapped_column(String(20), nullable=False, default="SEDAN")
    # REQUESTED | MATCHING | MATCHED | ACCEPTED | CANCELLED | NO_DRIVERS_AVAILABLE | EXPIRED
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="REQUESTED", index=True)
    payment_method: Mapped[str] = mapped_column(String(30), nullable=False)
    surge_multiplier: Mapped[Decimal] = mapped_column(Numeric(4, 2), default=Decimal("1.0"))
    estimated_fare: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    idempotency_key: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow
    )


class RideAssignment(Base):
    __tablename__ = "ride_assignments"
    __table_args__ = (UniqueConstraint("ride_id", "driver_id", name="uq_ride_assignment_ride_driver"),)

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    ride_id: Mapped[str] = mapped_column(String, ForeignKey("rides.id"), nullable=False, index=True)
    driver_id: Mapped[str] = mapped_column(String, ForeignKey("drivers.id"), nullable=False, index=True)
    # OFFERED | ACCEPTED | DECLINED
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="OFFERED", index=True)
    offered_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    responded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
