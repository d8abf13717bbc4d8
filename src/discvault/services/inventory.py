"""Optical drive inventory via lsscsi."""

import logging
import re
import subprocess

from discvault.config import ArchiverConfig
from discvault.error_handling import DependencyError, ExternalToolError
from discvault.services.interfaces import DriveEntry

logger = logging.getLogger(__name__)

# [0:0:0:0]    cd/dvd  HL-DT-ST DVDRAM GH24NSD1 LG00  /dev/sr0
LSSCSI_LINE = re.compile(
    r"^\[(?P<slot>[^\]]+)\]\s+(?P<type>\S+)\s+(?P<description>.*?)\s*(?P<device>/dev/\S+|-)\s*$",
)


def parse_lsscsi(output: str) -> list[DriveEntry]:
    """Return the cd/dvd rows of lsscsi output."""
    entries = []
    for line in output.splitlines():
        match = LSSCSI_LINE.match(line.strip())
        if not match:
            if line.strip():
                logger.debug("Skipping unparsable lsscsi line: %s", line)
            continue

        if match["type"] != "cd/dvd" or match["device"] == "-":
            continue

        tokens = match["description"].split()
        vendor = tokens[0] if tokens else ""
        revision = tokens[-1] if len(tokens) > 2 else ""
        model_tokens = tokens[1:-1] if len(tokens) > 2 else tokens[1:]

        entries.append(
            DriveEntry(
                device=match["device"],
                slot=match["slot"],
                vendor=vendor,
                model=" ".join(model_tokens),
                revision=revision,
            ),
        )

    return entries


class LsscsiInventory:
    """Lists optical drives attached to the host."""

    def __init__(self, config: ArchiverConfig):
        self.config = config

    def list_drives(self) -> list[DriveEntry]:
        try:
            result = subprocess.run(
                [self.config.lsscsi_binary],
                check=False,
                capture_output=True,
                text=True,
                timeout=self.config.lsscsi_timeout,
            )
        except FileNotFoundError as e:
            raise DependencyError(
                "lsscsi",
                install_command="sudo apt install lsscsi",
                original_error=e,
            ) from e
        except subprocess.TimeoutExpired as e:
            raise ExternalToolError(
                "lsscsi",
                details=f"timed out after {self.config.lsscsi_timeout}s",
                original_error=e,
            ) from e

        if result.returncode != 0:
            raise ExternalToolError("lsscsi", result.returncode, result.stderr)

        entries = parse_lsscsi(result.stdout)
        if self.config.drives:
            allowed = set(self.config.drives)
            entries = [e for e in entries if e.device in allowed]
        return entries
