"""
Unit tests for the status transition tables.
"""
from types import SimpleNamespace

import pytest

from app.exceptions import InvalidStateTransitionError
from app.models.enums import AssignmentStatus, DriverStatus, PaymentStatus, RideStatus, TripStatus
from app.services import state_machine
from app.services.state_machine import StateMachine


class TestRideStateMachine:
    def test_requested_to_matching(self):
        assert state_machine.RIDE.can_transition("REQUESTED", "MATCHING")

    def test_matching_to_matched(self):
        assert state_machine.RIDE.can_transition("MATCHING", "MATCHED")

    def test_matched_back_to_matching_on_decline(self):
        assert state_machine.RIDE.can_transition("MATCHED", "MATCHING")

    def test_matched_to_accepted(self):
        assert state_machine.RIDE.can_transition("MATCHED", "ACCEPTED")

    def test_cancel_allowed_before_acceptance(self):
        for status in ("REQUESTED", "MATCHING", "MATCHED"):
            assert state_machine.RIDE.can_transition(status, "CANCELLED")

    def test_accepted_cannot_be_cancelled(self):
        assert not state_machine.RIDE.can_transition("ACCEPTED", "CANCELLED")

    def test_terminal_states(self):
        for status in ("ACCEPTED", "CANCELLED", "NO_DRIVERS_AVAILABLE", "EXPIRED"):
            for target in RideStatus:
                assert not state_machine.RIDE.can_transition(status, target.value)

    def test_invalid_forward_skip(self):
        assert not state_machine.RIDE.can_transition("REQUESTED", "ACCEPTED")

    def test_unknown_status_is_rejected(self):
        assert not state_machine.RIDE.can_transition("TELEPORTED", "MATCHING")


class TestOtherMachines:
    def test_assignment_is_answered_once(self):
        assert state_machine.ASSIGNMENT.can_transition("OFFERED", "ACCEPTED")
        assert state_machine.ASSIGNMENT.can_transition("OFFERED", "DECLINED")
        assert not state_machine.ASSIGNMENT.can_transition("DECLINED", "ACCEPTED")

    def test_trip_completes_once(self):
        assert state_machine.TRIP.can_transition("IN_PROGRESS", "COMPLETED")
        assert not state_machine.TRIP.can_transition("COMPLETED", "COMPLETED")

    def test_driver_cannot_go_offline_mid_trip(self):
        assert not state_machine.DRIVER.can_transition("ON_TRIP", "OFFLINE")
        assert state_machine.DRIVER.can_transition("ON_TRIP", "AVAILABLE")

    def test_driver_needs_to_be_available_for_trip(self):
        assert not state_machine.DRIVER.can_transition("OFFLINE", "ON_TRIP")

    def test_payment_flow(self):
        assert state_machine.PAYMENT.can_transition("PENDING", "PROCESSING")
        assert state_machine.PAYMENT.can_transition("PROCESSING", "FAILED")
        assert not state_machine.PAYMENT.can_transition("FAILED", "SUCCESS")


class TestApplyAndEnsure:
    def test_apply_sets_status_value(self):
        record = SimpleNamespace(status="IN_PROGRESS")
        state_machine.TRIP.apply(record, TripStatus.COMPLETED)
        assert record.status == "COMPLETED"

    def test_illegal_apply_leaves_record_untouched(self):
        record = SimpleNamespace(status="COMPLETED")
        with pytest.raises(InvalidStateTransitionError) as exc_info:
            state_machine.TRIP.apply(record, TripStatus.COMPLETED)
        assert record.status == "COMPLETED"
        assert exc_info.value.status_code == 409
        assert exc_info.value.current == "COMPLETED"

    def test_ensure_raises_with_entity_name(self):
        with pytest.raises(InvalidStateTransitionError, match="Driver cannot transition from OFFLINE to ON_TRIP"):
            state_machine.DRIVER.ensure("OFFLINE", DriverStatus.ON_TRIP)

    def test_incomplete_table_rejected(self):
        with pytest.raises(ValueError, match="missing states"):
            StateMachine("Assignment", AssignmentStatus, {AssignmentStatus.OFFERED: set()})

    def test_every_table_covers_its_enum(self):
        for machine, enum in (
            (state_machine.RIDE, RideStatus),
            (state_machine.PAYMENT, PaymentStatus),
        ):
            assert set(machine.transitions) == set(enum)
