"""Per-drive finite state machine."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum

from discvault.error_handling import FailureKind

logger = logging.getLogger(__name__)


class DriveState(Enum):
    """Lifecycle states of a physical drive."""

    UNKNOWN = "unknown"
    EMPTY = "empty"
    DISK_PRESENT = "disk_present"
    MOUNTING = "mounting"
    READING = "reading"
    VERIFYING = "verifying"
    EJECTING = "ejecting"
    ERROR = "error"
    OFFLINE = "offline"

    @property
    def is_operating(self) -> bool:
        """True while a pipeline step or tray action owns the drive."""
        return self in OPERATING_STATES


OPERATING_STATES = frozenset(
    {
        DriveState.MOUNTING,
        DriveState.READING,
        DriveState.VERIFYING,
        DriveState.EJECTING,
    },
)

TRANSITIONS: dict[DriveState, frozenset[DriveState]] = {
    DriveState.UNKNOWN: frozenset({DriveState.EMPTY, DriveState.DISK_PRESENT}),
    DriveState.EMPTY: frozenset({DriveState.DISK_PRESENT}),
    DriveState.DISK_PRESENT: frozenset(
        {DriveState.MOUNTING, DriveState.EMPTY, DriveState.EJECTING},
    ),
    DriveState.MOUNTING: frozenset(
        {DriveState.READING, DriveState.DISK_PRESENT, DriveState.EJECTING},
    ),
    DriveState.READING: frozenset({DriveState.VERIFYING, DriveState.EJECTING}),
    DriveState.VERIFYING: frozenset({DriveState.EJECTING}),
    DriveState.EJECTING: frozenset({DriveState.EMPTY}),
    DriveState.ERROR: frozenset(
        {DriveState.DISK_PRESENT, DriveState.EMPTY, DriveState.EJECTING},
    ),
    DriveState.OFFLINE: frozenset(
        {DriveState.UNKNOWN, DriveState.EMPTY, DriveState.DISK_PRESENT},
    ),
}


class InvalidTransitionError(RuntimeError):
    """Raised when a drive is asked to move along an edge that does not exist."""

    def __init__(self, device: str, current: DriveState, target: DriveState):
        super().__init__(
            f"Drive {device} cannot go from {current.value} to {target.value}",
        )
        self.device = device
        self.current = current
        self.target = target


def can_transition(current: DriveState, target: DriveState) -> bool:
    """Check an edge, including the any-state routes to ERROR and OFFLINE."""
    if target is DriveState.OFFLINE:
        return current is not DriveState.OFFLINE
    if target is DriveState.ERROR:
        return current not in (DriveState.ERROR, DriveState.OFFLINE)
    return target in TRANSITIONS[current]


@dataclass(frozen=True)
class DriveEvent:
    """A state change observed on one drive."""

    device: str
    previous: DriveState | None
    current: DriveState
    failure: FailureKind | None = None
    at: float = 0.0

    def __str__(self) -> str:
        previous = self.previous.value if self.previous else "new"
        text = f"{self.device}: {previous} -> {self.current.value}"
        if self.failure:
            text += f" ({self.failure.value})"
        return text


class DriveStateMachine:
    """Validates and records the transitions of a single drive."""

    def __init__(self, device: str, state: DriveState = DriveState.UNKNOWN):
        self.device = device
        self.state = state
        self.last_failure: FailureKind | None = None
        self.changed_at = time.time()

    @property
    def is_operating(self) -> bool:
        return self.state.is_operating

    def transition(
        self,
        target: DriveState,
        *,
        failure: FailureKind | None = None,
    ) -> DriveEvent:
        """Move to ``target`` or raise InvalidTransitionError."""
        if not can_transition(self.state, target):
            raise InvalidTransitionError(self.device, self.state, target)

        previous = self.state
        self.state = target
        self.changed_at = time.time()
        if target is DriveState.ERROR:
            self.last_failure = failure or FailureKind.HARDWARE_FAULT
        elif target in (DriveState.EMPTY, DriveState.DISK_PRESENT):
            self.last_failure = None

        event = DriveEvent(
            device=self.device,
            previous=previous,
            current=target,
            failure=failure,
            at=self.changed_at,
        )
        logger.debug("Drive transition %s", event)
        return event
