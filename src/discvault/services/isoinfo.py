"""Disc layout inspection via isoinfo."""

import logging
import subprocess

from discvault.config import ArchiverConfig
from discvault.error_handling import (
    DependencyError,
    DriveTimeoutError,
    UnsupportedMediaError,
)
from discvault.services.interfaces import MediaLayout

logger = logging.getLogger(__name__)

VOLUME_ID = "Volume id:"
BLOCK_SIZE = "Logical block size is:"
VOLUME_SIZE = "Volume size is:"


def parse_isoinfo(output: str) -> MediaLayout:
    """Parse the primary volume descriptor printed by ``isoinfo -d``."""
    label = None
    block_size = None
    blocks = None

    for raw_line in output.splitlines():
        line = raw_line.strip()
        if line.startswith(VOLUME_ID):
            label = line[len(VOLUME_ID):].strip() or None
        elif line.startswith(BLOCK_SIZE):
            block_size = _parse_int(line[len(BLOCK_SIZE):])
        elif line.startswith(VOLUME_SIZE):
            blocks = _parse_int(line[len(VOLUME_SIZE):])

    if not block_size or blocks is None:
        msg = "isoinfo output has no block size or volume size"
        raise UnsupportedMediaError(msg, details=output[:500] or None)

    return MediaLayout(label=label, block_size=block_size, length=blocks * block_size)


def _parse_int(value: str) -> int | None:
    try:
        return int(value.strip())
    except ValueError:
        return None


def has_video_ts(listing: str) -> bool:
    """True when an ``isoinfo -f`` listing contains a VIDEO_TS directory."""
    return any(
        line.strip().upper().startswith("/VIDEO_TS") for line in listing.splitlines()
    )


class IsoInfoReader:
    """Reads the ISO9660 volume layout of an inserted disc."""

    def __init__(self, config: ArchiverConfig):
        self.config = config

    def read_layout(self, device: str) -> MediaLayout:
        descriptor = self._run(["-d", "-i", device], device)
        layout = parse_isoinfo(descriptor)

        listing = self._run(["-f", "-i", device], device, required=False)
        if listing and has_video_ts(listing):
            layout = MediaLayout(
                label=layout.label,
                block_size=layout.block_size,
                length=layout.length,
                video_dvd=True,
            )

        logger.debug(
            "Layout for %s: label=%s blocks=%s video_dvd=%s",
            device,
            layout.label,
            layout.blocks,
            layout.video_dvd,
        )
        return layout

    def _run(self, args: list[str], device: str, *, required: bool = True) -> str:
        try:
            result = subprocess.run(
                [self.config.isoinfo_binary, *args],
                check=False,
                capture_output=True,
                text=True,
                timeout=self.config.isoinfo_timeout,
            )
        except FileNotFoundError as e:
            raise DependencyError(
                "isoinfo",
                install_command="sudo apt install genisoimage",
                original_error=e,
            ) from e
        except subprocess.TimeoutExpired as e:
            if not required:
                return ""
            msg = f"isoinfo timed out reading {device}"
            raise DriveTimeoutError(msg, device=device, original_error=e) from e

        if result.returncode != 0:
            if not required:
                return ""
            msg = f"isoinfo could not read a volume descriptor from {device}"
            raise UnsupportedMediaError(msg, device=device, details=result.stderr)

        return result.stdout
