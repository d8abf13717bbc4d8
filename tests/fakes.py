"""Simulated drives and discs shared by the tests."""

import errno
import io
import os
import threading
import time

from discvault.error_handling import DecryptionError, UnsupportedMediaError
from discvault.services.interfaces import (
    DriveEntry,
    MediaLayout,
    MediaStatus,
    TrayAction,
)

BLOCK = 2048


def disc_bytes(blocks: int, seed: int = 0) -> bytes:
    """Deterministic disc content that differs per seed."""
    pattern = bytes((i * 7 + seed) % 251 for i in range(BLOCK))
    return pattern * blocks


class SimulatedDisc:
    """An inserted disc and the faults it should produce."""

    def __init__(
        self,
        data: bytes,
        label: str | None = "TEST_DISC",
        *,
        fs_type: str = "iso9660",
        video_dvd: bool = False,
        failing_reads: int = 0,
        read_delay: float = 0.0,
        layout_error: Exception | None = None,
    ):
        self.data = data
        self.label = label
        self.fs_type = fs_type
        self.video_dvd = video_dvd
        self.failing_reads = failing_reads
        self.read_delay = read_delay
        self.layout_error = layout_error
        self.opens = 0
        self.gate: threading.Event | None = None
        self.reading = threading.Event()


class SimulatedDrive:
    def __init__(self, device: str, slot: str):
        self.device = device
        self.slot = slot
        self.disc: SimulatedDisc | None = None
        self.online = True
        self.eject_fails = False
        self.tray_open = False
        self.active_readers = 0


class SimulatedStream(io.RawIOBase):
    """Reads a disc's bytes, failing like a real drive when asked to."""

    def __init__(self, bay: "SimulatedBay", drive: SimulatedDrive, disc: SimulatedDisc, fail_at: int | None):
        super().__init__()
        self.bay = bay
        self.drive = drive
        self.disc = disc
        self.fail_at = fail_at
        self.pos = 0
        with bay.lock:
            drive.active_readers += 1
            bay.max_concurrent_readers = max(
                bay.max_concurrent_readers,
                drive.active_readers,
            )

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:
        self.disc.reading.set()
        if self.disc.gate is not None:
            self.disc.gate.wait(timeout=10)
        if self.disc.read_delay:
            time.sleep(self.disc.read_delay)
        if not self.drive.online or self.drive.disc is not self.disc:
            raise OSError(errno.ENOMEDIUM, "No medium found")
        if self.fail_at is not None and self.pos >= self.fail_at:
            raise OSError(errno.EIO, "Input/output error")

        view = memoryview(buffer).cast("B")
        chunk = self.disc.data[self.pos:self.pos + len(view)]
        view[:len(chunk)] = chunk
        self.pos += len(chunk)
        return len(chunk)

    def close(self) -> None:
        if not self.closed:
            with self.bay.lock:
                self.drive.active_readers -= 1
        super().close()


class SimulatedBay:
    """A rack of simulated drives implementing every hardware collaborator."""

    def __init__(self):
        self.drives: dict[str, SimulatedDrive] = {}
        self.lock = threading.Lock()
        self.ejects: list[str] = []
        self.max_concurrent_readers = 0

    def add_drive(self, device: str, disc: SimulatedDisc | None = None) -> SimulatedDrive:
        drive = SimulatedDrive(device, f"0:0:{len(self.drives)}:0")
        drive.disc = disc
        self.drives[device] = drive
        return drive

    def insert(self, device: str, disc: SimulatedDisc) -> None:
        drive = self.drives[device]
        drive.disc = disc
        drive.tray_open = False

    def unplug(self, device: str) -> None:
        self.drives[device].online = False

    def plug(self, device: str) -> None:
        self.drives[device].online = True

    # InventorySource
    def list_drives(self) -> list[DriveEntry]:
        return [
            DriveEntry(device=d.device, slot=d.slot, vendor="SIM", model="DRIVE")
            for d in self.drives.values()
            if d.online
        ]

    # MediaProbe
    def probe(self, device: str) -> MediaStatus:
        drive = self.drives[device]
        if drive.disc is None:
            return MediaStatus(present=False)
        return MediaStatus(
            present=True,
            fs_type=drive.disc.fs_type,
            label=drive.disc.label,
        )

    # LayoutReader
    def read_layout(self, device: str) -> MediaLayout:
        drive = self.drives[device]
        if drive.disc is None:
            msg = f"No disc in {device}"
            raise UnsupportedMediaError(msg, device=device)
        if drive.disc.layout_error is not None:
            raise drive.disc.layout_error
        return MediaLayout(
            label=drive.disc.label,
            block_size=BLOCK,
            length=len(drive.disc.data),
            video_dvd=drive.disc.video_dvd,
        )

    # EjectControl
    def command(self, device: str, action: TrayAction) -> bool:
        drive = self.drives[device]
        if action is TrayAction.CLOSE:
            drive.tray_open = False
            return True
        if drive.eject_fails:
            return False
        self.ejects.append(device)
        drive.disc = None
        drive.tray_open = True
        return True

    def eject(self, device: str) -> bool:
        return self.command(device, TrayAction.OPEN)

    def close(self, device: str) -> bool:
        return self.command(device, TrayAction.CLOSE)

    # Raw device opener
    def open_device(self, device: str) -> SimulatedStream:
        drive = self.drives[device]
        if not drive.online:
            raise OSError(errno.ENODEV, os.strerror(errno.ENODEV), device)
        disc = drive.disc
        if disc is None:
            raise OSError(errno.ENOMEDIUM, "No medium found", device)

        fail_at = None
        with self.lock:
            disc.opens += 1
            if disc.failing_reads > 0:
                disc.failing_reads -= 1
                fail_at = len(disc.data) // 2
        return SimulatedStream(self, drive, disc, fail_at)


class FakeDecryptor:
    """Decryptor that serves the simulated disc or refuses to authenticate."""

    def __init__(self, bay: SimulatedBay, *, fail: bool = False):
        self.bay = bay
        self.fail = fail
        self.opened: list[str] = []

    def open(self, device: str) -> SimulatedStream:
        if self.fail:
            msg = f"libdvdcss could not authenticate {device}"
            raise DecryptionError(msg, device=device)
        self.opened.append(device)
        return self.bay.open_device(device)


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds
