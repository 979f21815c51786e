from enum import Enum


class VehicleTier(str, Enum):
    AUTO = "AUTO"
    SEDAN = "SEDAN"
    SUV = "SUV"


class PaymentMethod(str, Enum):
    CASH = "CASH"
    CARD = "CARD"
    UPI = "UPI"
    WALLET = "WALLET"


class DriverStatus(str, Enum):
    OFFLINE = "OFFLINE"
    AVAILABLE = "AVAILABLE"
    ON_TRIP = "ON_TRIP"


class RideStatus(str, Enum):
    REQUESTED = "REQUESTED"
    MATCHING = "MATCHING"
    MATCHED = "MATCHED"
    ACCEPTED = "ACCEPTED"
    CANCELLED = "CANCELLED"
    NO_DRIVERS_AVAILABLE = "NO_DRIVERS_AVAILABLE"
    EXPIRED = "EXPIRED"  # reserved


class AssignmentStatus(str, Enum):
    OFFERED = "OFFERED"
    ACCEPTED = "ACCEPTED"
    DECLINED = "DECLINED"


class TripStatus(str, Enum):
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class RideEventType(str, Enum):
    REQUESTED = "REQUESTED"
    DRIVER_ASSIGNED = "DRIVER_ASSIGNED"
    DRIVER_EN_ROUTE = "DRIVER_EN_ROUTE"
    DRIVER_ARRIVED = "DRIVER_ARRIVED"
    TRIP_STARTED = "TRIP_STARTED"
    TRIP_COMPLETED = "TRIP_COMPLETED"
    PAYMENT_COMPLETED = "PAYMENT_COMPLETED"
    CANCELLED = "CANCELLED"
    NO_DRIVERS = "NO_DRIVERS"
