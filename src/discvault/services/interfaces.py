"""Capability protocols for the external collaborators."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import BinaryIO, Protocol


@dataclass(frozen=True)
class DriveEntry:
    """One optical drive as reported by the inventory."""

    device: str
    slot: str
    vendor: str = ""
    model: str = ""
    revision: str = ""


@dataclass(frozen=True)
class MediaStatus:
    """Result of probing a drive for an inserted disc."""

    present: bool
    fs_type: str | None = None
    label: str | None = None


@dataclass(frozen=True)
class MediaLayout:
    """Volume layout of an inserted disc."""

    label: str | None
    block_size: int
    length: int
    video_dvd: bool = False

    @property
    def blocks(self) -> int:
        return self.length // self.block_size


class TrayAction(Enum):
    OPEN = "open"
    CLOSE = "close"


class InventorySource(Protocol):
    def list_drives(self) -> list[DriveEntry]: ...


class MediaProbe(Protocol):
    def probe(self, device: str) -> MediaStatus: ...


class LayoutReader(Protocol):
    def read_layout(self, device: str) -> MediaLayout: ...


class EjectControl(Protocol):
    def command(self, device: str, action: TrayAction) -> bool: ...

    def eject(self, device: str) -> bool: ...

    def close(self, device: str) -> bool: ...


class Decryptor(Protocol):
    def open(self, device: str) -> BinaryIO: ...
