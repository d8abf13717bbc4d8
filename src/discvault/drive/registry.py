"""Drive registry - the shared set of known drives and their probed attributes."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import asdict, dataclass

from discvault.drive.state import DriveEvent, DriveState, DriveStateMachine
from discvault.error_handling import DiscVaultError, FailureKind
from discvault.services.interfaces import (
    DriveEntry,
    InventorySource,
    MediaProbe,
    MediaStatus,
)

logger = logging.getLogger(__name__)


class ReadWriteLock:
    """Many concurrent readers or one writer; waiting writers go first."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if not self._readers:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


@dataclass(frozen=True)
class DriveSnapshot:
    """Read-only copy of a drive handed out to readers."""

    device: str
    slot: str
    vendor: str
    model: str
    state: DriveState
    job_id: int | None
    reserved_for: int | None
    fs_type: str | None
    disc_label: str | None
    last_probed_at: float | None
    consecutive_failures: int
    last_failure: FailureKind | None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["state"] = self.state.value
        data["last_failure"] = self.last_failure.value if self.last_failure else None
        return data

    @classmethod
    def from_dict(cls, data: dict) -> DriveSnapshot:
        data = dict(data)
        data["state"] = DriveState(data["state"])
        failure = data.get("last_failure")
        data["last_failure"] = FailureKind(failure) if failure else None
        return cls(**data)


class Drive:
    """A physical drive and the job it currently holds."""

    def __init__(self, entry: DriveEntry):
        self.device = entry.device
        self.slot = entry.slot
        self.vendor = entry.vendor
        self.model = entry.model
        self.machine = DriveStateMachine(entry.device)
        self.job_id: int | None = None
        self.reserved_for: int | None = None
        self.fs_type: str | None = None
        self.disc_label: str | None = None
        self.last_probed_at: float | None = None
        self.consecutive_failures = 0
        self.vanished = False

    @property
    def state(self) -> DriveState:
        return self.machine.state

    @property
    def is_busy(self) -> bool:
        return self.machine.is_operating or self.job_id is not None

    def update_attributes(self, entry: DriveEntry) -> None:
        self.slot = entry.slot
        self.vendor = entry.vendor
        self.model = entry.model

    def snapshot(self) -> DriveSnapshot:
        return DriveSnapshot(
            device=self.device,
            slot=self.slot,
            vendor=self.vendor,
            model=self.model,
            state=self.state,
            job_id=self.job_id,
            reserved_for=self.reserved_for,
            fs_type=self.fs_type,
            disc_label=self.disc_label,
            last_probed_at=self.last_probed_at,
            consecutive_failures=self.consecutive_failures,
            last_failure=self.machine.last_failure,
        )

    def __str__(self) -> str:
        return f"{self.device} [{self.slot}] ({self.state.value})"


class DriveRegistry:
    """Owns every Drive; all mutation goes through the write lock."""

    def __init__(
        self,
        inventory: InventorySource,
        media_probe: MediaProbe,
        *,
        clock: Callable[[], float] = time.time,
    ):
        self.inventory = inventory
        self.media_probe = media_probe
        self.clock = clock
        self._drives: dict[str, Drive] = {}
        self._lock = ReadWriteLock()
        self._listeners: list[Callable[[DriveEvent], None]] = []

    def subscribe(self, listener: Callable[[DriveEvent], None]) -> None:
        """Register a callback for every drive event (called outside the lock)."""
        self._listeners.append(listener)

    def _emit(self, events: list[DriveEvent]) -> None:
        for event in events:
            for listener in self._listeners:
                try:
                    listener(event)
                except Exception:
                    logger.exception("Drive event listener failed for %s", event)

    def refresh(self) -> list[DriveEvent]:
        """Poll inventory and media state, merging the results into the registry."""
        try:
            entries = self.inventory.list_drives()
        except DiscVaultError as e:
            logger.warning("Drive inventory failed: %s", e.message)
            return []

        with self._lock.read():
            busy = {device for device, drive in self._drives.items() if drive.is_busy}

        probes: dict[str, MediaStatus] = {}
        for entry in entries:
            if entry.device in busy:
                continue
            try:
                probes[entry.device] = self.media_probe.probe(entry.device)
            except DiscVaultError as e:
                logger.warning("Media probe failed on %s: %s", entry.device, e.message)

        now = self.clock()
        events: list[DriveEvent] = []
        with self._lock.write():
            seen = set()
            for entry in entries:
                seen.add(entry.device)
                drive = self._drives.get(entry.device)
                if drive is None:
                    drive = Drive(entry)
                    self._drives[entry.device] = drive
                    logger.info(
                        "Discovered drive %s at slot %s (%s %s)",
                        entry.device,
                        entry.slot,
                        entry.vendor,
                        entry.model,
                    )
                    events.append(
                        DriveEvent(entry.device, None, DriveState.UNKNOWN, at=now),
                    )
                else:
                    drive.update_attributes(entry)
                events.extend(self._merge_probe(drive, probes.get(entry.device), now))

            for device, drive in self._drives.items():
                if device in seen:
                    continue
                if drive.is_busy:
                    if not drive.vanished:
                        logger.warning("Drive %s vanished during job %s", device, drive.job_id)
                        drive.vanished = True
                elif drive.state is not DriveState.OFFLINE:
                    logger.warning("Drive %s is offline", device)
                    drive.vanished = False
                    events.append(
                        drive.machine.transition(
                            DriveState.OFFLINE,
                            failure=FailureKind.DRIVE_OFFLINE,
                        ),
                    )

        self._emit(events)
        return events

    def _merge_probe(
        self,
        drive: Drive,
        status: MediaStatus | None,
        now: float,
    ) -> list[DriveEvent]:
        """Apply one probe result; busy drives are left alone."""
        events: list[DriveEvent] = []
        if drive.is_busy:
            if drive.vanished:
                logger.info("Drive %s reappeared", drive.device)
                drive.vanished = False
            return events

        # Only a drive holding a job stays flagged as vanished
        drive.vanished = False
        if drive.state is DriveState.OFFLINE:
            logger.info("Drive %s is back online", drive.device)
            events.append(drive.machine.transition(DriveState.UNKNOWN))

        if status is None:
            return events

        drive.last_probed_at = now
        if status.present:
            drive.fs_type = status.fs_type
            drive.disc_label = status.label
            if drive.state in (DriveState.UNKNOWN, DriveState.EMPTY):
                events.append(drive.machine.transition(DriveState.DISK_PRESENT))
        else:
            drive.fs_type = None
            drive.disc_label = None
            if drive.reserved_for is not None:
                logger.info(
                    "Disc removed from %s, releasing it from job %s",
                    drive.device,
                    drive.reserved_for,
                )
                drive.reserved_for = None
            if drive.state in (
                DriveState.UNKNOWN,
                DriveState.DISK_PRESENT,
                DriveState.ERROR,
            ):
                events.append(drive.machine.transition(DriveState.EMPTY))

        return events

    def snapshot(self) -> list[DriveSnapshot]:
        with self._lock.read():
            drives = [drive.snapshot() for drive in self._drives.values()]
        return sorted(drives, key=lambda d: (d.slot, d.device))

    def get(self, device: str) -> DriveSnapshot | None:
        with self._lock.read():
            drive = self._drives.get(device)
            return drive.snapshot() if drive else None

    def is_vanished(self, device: str) -> bool:
        with self._lock.read():
            drive = self._drives.get(device)
            return drive is not None and drive.vanished

    def candidates_for(
        self,
        job_id: int,
        affinity: str | None = None,
        exclude: set[str] | None = None,
    ) -> list[DriveSnapshot]:
        """Idle drives holding a disc that ``job_id`` may claim, best first.

        A job that holds a retry reservation only ever goes back to that drive.
        """
        exclude = exclude or set()
        with self._lock.read():
            reserved = [d for d in self._drives.values() if d.reserved_for == job_id]
            pool = reserved or [
                d for d in self._drives.values() if d.reserved_for is None
            ]
            candidates = [
                d.snapshot()
                for d in pool
                if d.state is DriveState.DISK_PRESENT
                and d.job_id is None
                and not d.vanished
                and d.device not in exclude
                and (affinity is None or d.device == affinity)
            ]
        return sorted(
            candidates,
            key=lambda d: (d.consecutive_failures, d.slot, d.device),
        )

    def claim(self, device: str, job_id: int) -> bool:
        """Atomically hand an idle drive to a job (DISK_PRESENT -> MOUNTING)."""
        with self._lock.write():
            drive = self._drives.get(device)
            if (
                drive is None
                or drive.state is not DriveState.DISK_PRESENT
                or drive.job_id is not None
                or drive.vanished
                or drive.reserved_for not in (None, job_id)
            ):
                return False
            event = drive.machine.transition(DriveState.MOUNTING)
            drive.job_id = job_id
            drive.reserved_for = None

        self._emit([event])
        return True

    def unclaim(self, device: str, job_id: int) -> None:
        """Roll back a claim whose job could not be dispatched."""
        with self._lock.write():
            drive = self._drives.get(device)
            if (
                drive is None
                or drive.job_id != job_id
                or drive.state is not DriveState.MOUNTING
            ):
                return
            event = drive.machine.transition(DriveState.DISK_PRESENT)
            drive.job_id = None

        self._emit([event])

    def transition(
        self,
        device: str,
        target: DriveState,
        *,
        failure: FailureKind | None = None,
        release_job: bool = False,
        reserve_for: int | None = None,
    ) -> DriveEvent:
        """Move a drive to ``target``; used by the worker that owns the drive."""
        with self._lock.write():
            drive = self._drives[device]
            event = drive.machine.transition(target, failure=failure)
            if release_job:
                drive.job_id = None
            if target is DriveState.OFFLINE:
                drive.vanished = False
            if target is DriveState.EMPTY:
                drive.reserved_for = None
                drive.fs_type = None
                drive.disc_label = None
            if reserve_for is not None:
                drive.reserved_for = reserve_for

        self._emit([event])
        return event

    def begin_eject(self, device: str) -> bool:
        """Start an operator eject on an idle drive. False if the drive is busy."""
        with self._lock.write():
            drive = self._drives.get(device)
            if drive is None or drive.is_busy:
                return False
            if drive.state not in (DriveState.DISK_PRESENT, DriveState.ERROR):
                return False
            event = drive.machine.transition(DriveState.EJECTING)
            drive.reserved_for = None

        self._emit([event])
        return True

    def record_outcome(self, device: str, *, success: bool) -> None:
        with self._lock.write():
            drive = self._drives.get(device)
            if drive is None:
                return
            if success:
                drive.consecutive_failures = 0
            else:
                drive.consecutive_failures += 1

    def release_reservations(self, keep: set[int]) -> int:
        """Drop reservations held for jobs that are no longer schedulable."""
        released = 0
        with self._lock.write():
            for drive in self._drives.values():
                if drive.reserved_for is not None and drive.reserved_for not in keep:
                    logger.info(
                        "Releasing %s from job %s",
                        drive.device,
                        drive.reserved_for,
                    )
                    drive.reserved_for = None
                    released += 1
        return released
