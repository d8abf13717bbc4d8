"""Media presence detection via blkid."""

import logging
import subprocess

from discvault.config import ArchiverConfig
from discvault.error_handling import DependencyError, ExternalToolError
from discvault.services.interfaces import MediaStatus

logger = logging.getLogger(__name__)

BLKID_FOUND = 0
BLKID_NOTHING_FOUND = 2
BLKID_AMBIVALENT = 8


def parse_blkid_export(output: str) -> dict[str, str]:
    """Parse ``blkid -o export`` KEY=VALUE lines."""
    fields = {}
    for line in output.splitlines():
        key, sep, value = line.strip().partition("=")
        if sep:
            fields[key] = value
    return fields


class BlkidMediaProbe:
    """Reports whether a drive holds a disc and what filesystem it carries."""

    def __init__(self, config: ArchiverConfig):
        self.config = config

    def probe(self, device: str) -> MediaStatus:
        try:
            result = subprocess.run(
                [self.config.blkid_binary, "-p", "-o", "export", device],
                check=False,
                capture_output=True,
                text=True,
                timeout=self.config.blkid_timeout,
            )
        except FileNotFoundError as e:
            raise DependencyError(
                "blkid",
                install_command="sudo apt install util-linux",
                original_error=e,
            ) from e
        except subprocess.TimeoutExpired as e:
            raise ExternalToolError(
                "blkid",
                details=f"timed out probing {device}",
                original_error=e,
            ) from e

        if result.returncode == BLKID_FOUND:
            fields = parse_blkid_export(result.stdout)
            return MediaStatus(
                present=True,
                fs_type=fields.get("TYPE"),
                label=fields.get("LABEL") or None,
            )

        if result.returncode == BLKID_NOTHING_FOUND:
            return MediaStatus(present=False)

        if result.returncode == BLKID_AMBIVALENT:
            logger.debug("blkid found several signatures on %s", device)
            return MediaStatus(present=True)

        raise ExternalToolError("blkid", result.returncode, result.stderr)
