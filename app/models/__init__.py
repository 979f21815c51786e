from app.models.rider import Rider
from app.models.driver import Driver
from app.models.ride import Ride, RideAssignment
from app.models.trip import Trip
from app.models.payment import Payment

__all__ = ["Rider", "Driver", "Ride", "RideAssignment", "Trip", "Payment"]
