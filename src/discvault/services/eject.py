"""Tray control via the eject utility."""

import logging
import subprocess

from discvault.config import ArchiverConfig
from discvault.error_handling import DependencyError
from discvault.services.interfaces import TrayAction

logger = logging.getLogger(__name__)


class EjectTool:
    """Opens and closes drive trays, retrying stubborn mechanisms."""

    def __init__(self, config: ArchiverConfig):
        self.config = config

    def command(self, device: str, action: TrayAction) -> bool:
        """Run one tray action, retrying up to ``eject_attempts`` times."""
        args = [self.config.eject_binary]
        if action is TrayAction.CLOSE:
            args.append("-t")
        args.append(device)

        for attempt in range(1, self.config.eject_attempts + 1):
            try:
                result = subprocess.run(
                    args,
                    check=False,
                    capture_output=True,
                    text=True,
                    timeout=self.config.eject_timeout,
                )
            except FileNotFoundError as e:
                raise DependencyError(
                    "eject",
                    install_command="sudo apt install eject",
                    original_error=e,
                ) from e
            except subprocess.TimeoutExpired:
                logger.warning(
                    "Tray %s on %s timed out (attempt %s)",
                    action.value,
                    device,
                    attempt,
                )
                continue

            if result.returncode == 0:
                logger.info("Tray %s on %s", action.value, device)
                return True

            logger.debug(
                "eject %s on %s failed (attempt %s): %s",
                action.value,
                device,
                attempt,
                result.stderr.strip(),
            )

        logger.error("Failed to %s tray on %s", action.value, device)
        return False

    def eject(self, device: str) -> bool:
        return self.command(device, TrayAction.OPEN)

    def close(self, device: str) -> bool:
        return self.command(device, TrayAction.CLOSE)
