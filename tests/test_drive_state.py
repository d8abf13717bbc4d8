"""Tests for the per-drive state machine."""

import pytest

from discvault.drive.state import (
    DriveState,
    DriveStateMachine,
    InvalidTransitionError,
    can_transition,
)
from discvault.error_handling import FailureKind

HAPPY_PATH = [
    DriveState.EMPTY,
    DriveState.DISK_PRESENT,
    DriveState.MOUNTING,
    DriveState.READING,
    DriveState.VERIFYING,
    DriveState.EJECTING,
    DriveState.EMPTY,
]


class TestTransitions:
    """Test legal and illegal edges."""

    def test_happy_path(self):
        machine = DriveStateMachine("/dev/sr0")

        events = [machine.transition(state) for state in HAPPY_PATH]

        assert machine.state is DriveState.EMPTY
        assert events[0].previous is DriveState.UNKNOWN
        assert [e.current for e in events] == HAPPY_PATH

    @pytest.mark.parametrize("state", [s for s in DriveState if s is not DriveState.OFFLINE])
    def test_offline_reachable_from_everywhere(self, state):
        assert can_transition(state, DriveState.OFFLINE)

    @pytest.mark.parametrize(
        "state",
        [s for s in DriveState if s not in (DriveState.ERROR, DriveState.OFFLINE)],
    )
    def test_error_reachable_except_from_offline(self, state):
        assert can_transition(state, DriveState.ERROR)

    def test_error_not_reachable_from_offline(self):
        assert not can_transition(DriveState.OFFLINE, DriveState.ERROR)

    def test_illegal_transition_raises(self):
        machine = DriveStateMachine("/dev/sr0", DriveState.EMPTY)

        with pytest.raises(InvalidTransitionError) as excinfo:
            machine.transition(DriveState.READING)

        assert excinfo.value.current is DriveState.EMPTY
        assert excinfo.value.target is DriveState.READING
        assert machine.state is DriveState.EMPTY

    def test_verifying_cannot_return_to_reading(self):
        machine = DriveStateMachine("/dev/sr0", DriveState.VERIFYING)

        with pytest.raises(InvalidTransitionError):
            machine.transition(DriveState.READING)

    @pytest.mark.parametrize(
        "state",
        [DriveState.MOUNTING, DriveState.READING, DriveState.VERIFYING],
    )
    def test_cancel_path_to_ejecting(self, state):
        assert can_transition(state, DriveState.EJECTING)

    def test_retry_and_abandon_from_error(self):
        assert can_transition(DriveState.ERROR, DriveState.DISK_PRESENT)
        assert can_transition(DriveState.ERROR, DriveState.EMPTY)
        assert can_transition(DriveState.ERROR, DriveState.EJECTING)
        assert not can_transition(DriveState.ERROR, DriveState.READING)

    def test_drive_return_from_offline(self):
        for target in (DriveState.UNKNOWN, DriveState.EMPTY, DriveState.DISK_PRESENT):
            assert can_transition(DriveState.OFFLINE, target)


class TestFailureRecording:
    """ERROR entries carry a failure kind."""

    def test_error_records_failure(self):
        machine = DriveStateMachine("/dev/sr0", DriveState.READING)

        event = machine.transition(DriveState.ERROR, failure=FailureKind.TIMEOUT)

        assert machine.last_failure is FailureKind.TIMEOUT
        assert event.failure is FailureKind.TIMEOUT

    def test_error_without_kind_defaults_to_hardware_fault(self):
        machine = DriveStateMachine("/dev/sr0", DriveState.READING)

        machine.transition(DriveState.ERROR)

        assert machine.last_failure is FailureKind.HARDWARE_FAULT

    def test_failure_cleared_when_drive_recovers(self):
        machine = DriveStateMachine("/dev/sr0", DriveState.READING)
        machine.transition(DriveState.ERROR, failure=FailureKind.TRANSIENT_IO)

        machine.transition(DriveState.DISK_PRESENT)

        assert machine.last_failure is None

    def test_operating_states(self):
        assert DriveState.READING.is_operating
        assert DriveState.EJECTING.is_operating
        assert not DriveState.DISK_PRESENT.is_operating
        assert not DriveState.ERROR.is_operating
