"""
Transition tables for every status-bearing record.

Mutating operations call `ensure` for each record they will touch before
changing anything, then `apply` to set the new status.
"""
from enum import Enum
from typing import Any

from app.exceptions import InvalidStateTransitionError
from app.models.enums import AssignmentStatus, DriverStatus, PaymentStatus, RideStatus, TripStatus


class StateMachine:
    def __init__(self, entity: str, status_type: type[Enum], transitions: dict[Enum, set[Enum]]):
        missing = set(status_type) - set(transitions)
        if missing:
            raise ValueError(f"{entity} transition table missing states: {sorted(s.value for s in missing)}")
        self.entity = entity
        self.status_type = status_type
        self.transitions = {state: frozenset(targets) for state, targets in transitions.items()}

    def can_transition(self, current: str, target: str) -> bool:
        try:
            curr = self.status_type(current)
            new = self.status_type(target)
        except ValueError:
            return False
        return new in self.transitions[curr]

    def ensure(self, current: str, target: Enum) -> None:
        if not self.can_transition(current, target.value):
            raise InvalidStateTransitionError(self.entity, str(current), target.value)

    def apply(self, record: Any, target: Enum) -> None:
        self.ensure(record.status, target)
        record.status = target.value


RIDE = StateMachine(
    "Ride",
    RideStatus,
    {
        RideStatus.REQUESTED: {RideStatus.MATCHING, RideStatus.CANCELLED, RideStatus.NO_DRIVERS_AVAILABLE},
        RideStatus.MATCHING: {RideStatus.MATCHED, RideStatus.CANCELLED, RideStatus.NO_DRIVERS_AVAILABLE},
        # MATCHED -> MATCHING when the offered driver declines
        RideStatus.MATCHED: {RideStatus.ACCEPTED, RideStatus.CANCELLED, RideStatus.MATCHING},
        RideStatus.ACCEPTED: set(),
        RideStatus.CANCELLED: set(),
        RideStatus.NO_DRIVERS_AVAILABLE: set(),
        RideStatus.EXPIRED: set(),
    },
)

ASSIGNMENT = StateMachine(
    "Assignment",
    AssignmentStatus,
    {
        AssignmentStatus.OFFERED: {AssignmentStatus.ACCEPTED, AssignmentStatus.DECLINED},
        AssignmentStatus.ACCEPTED: set(),
        AssignmentStatus.DECLINED: set(),
    },
)

TRIP = StateMachine(
    "Trip",
    TripStatus,
    {
        TripStatus.IN_PROGRESS: {TripStatus.COMPLETED},
        TripStatus.COMPLETED: set(),
    },
)

DRIVER = StateMachine(
    "Driver",
    DriverStatus,
    {
        DriverStatus.OFFLINE: {DriverStatus.AVAILABLE},
        DriverStatus.AVAILABLE: {DriverStatus.OFFLINE, DriverStatus.ON_TRIP},
        DriverStatus.ON_TRIP: {DriverStatus.AVAILABLE},
    },
)

PAYMENT = StateMachine(
    "Payment",
    PaymentStatus,
    {
        PaymentStatus.PENDING: {PaymentStatus.PROCESSING},
        PaymentStatus.PROCESSING: {PaymentStatus.SUCCESS, PaymentStatus.FAILED},
        PaymentStatus.SUCCESS: set(),
        PaymentStatus.FAILED: set(),
    },
)

# Rides in these states block the rider from requesting another one
ACTIVE_RIDE_STATUSES = (RideStatus.REQUESTED.value, RideStatus.MATCHING.value, RideStatus.MATCHED.value)
MATCHABLE_RIDE_STATUSES = (RideStatus.REQUESTED.value, RideStatus.MATCHING.value)
