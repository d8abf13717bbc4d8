"""Error types and user-facing error display for discvault."""

import logging
import shutil
from enum import Enum
from pathlib import Path

from rich.console import Console

logger = logging.getLogger(__name__)
console = Console()


class ErrorCategory(Enum):
    """Categories of errors for better user experience."""

    CONFIGURATION = "configuration"
    DEPENDENCY = "dependency"
    HARDWARE = "hardware"
    NETWORK = "network"
    FILESYSTEM = "filesystem"
    MEDIA = "media"
    EXTERNAL_TOOL = "external_tool"
    SYSTEM = "system"
    USER_INPUT = "user_input"


class FailureKind(Enum):
    """Classification attached to every failed archival attempt."""

    TRANSIENT_IO = "transient_io"
    TIMEOUT = "timeout"
    HARDWARE_FAULT = "hardware_fault"
    VERIFICATION_MISMATCH = "verification_mismatch"
    DRIVE_OFFLINE = "drive_offline"
    ARCHIVE_WRITE = "archive_write"
    PERMANENT_MEDIA = "permanent_media"
    DECRYPTION = "decryption"


class DiscVaultError(Exception):
    """Base exception for discvault with enhanced user experience."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory,
        *,
        solution: str | None = None,
        details: str | None = None,
        recoverable: bool = True,
        log_level: int = logging.ERROR,
        original_error: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.solution = solution
        self.details = details
        self.recoverable = recoverable
        self.log_level = log_level
        self.original_error = original_error

    def display_to_user(self) -> None:
        """Display error to user with helpful context."""
        category_styles = {
            ErrorCategory.CONFIGURATION: ("⚙️", "yellow"),
            ErrorCategory.DEPENDENCY: ("📦", "red"),
            ErrorCategory.HARDWARE: ("🔌", "red"),
            ErrorCategory.NETWORK: ("🌐", "orange"),
            ErrorCategory.FILESYSTEM: ("📁", "red"),
            ErrorCategory.MEDIA: ("💿", "blue"),
            ErrorCategory.EXTERNAL_TOOL: ("🔧", "red"),
            ErrorCategory.SYSTEM: ("💻", "red"),
            ErrorCategory.USER_INPUT: ("⌨️", "yellow"),
        }

        emoji, color = category_styles.get(self.category, ("❌", "red"))

        console.print(
            f"\n{emoji} [{color}bold]{self.category.value.title()} Error[/{color}bold]",
        )
        console.print(f"[{color}]{self.message}[/{color}]")

        if self.details:
            console.print(f"\n[dim]Details:[/dim] {self.details}")

        if self.solution:
            console.print(f"\n[green]💡 Solution:[/green] {self.solution}")

        if self.recoverable:
            console.print(
                "\n[dim]This error may be temporary. You can try again.[/dim]",
            )
        else:
            console.print(
                "\n[dim]This error requires intervention before continuing.[/dim]",
            )

        if self.original_error:
            logger.log(
                self.log_level,
                "%s: %s",
                self.category.value,
                self.message,
                exc_info=self.original_error,
            )
        else:
            logger.log(self.log_level, "%s: %s", self.category.value, self.message)


class ConfigurationError(DiscVaultError):
    """Configuration-related errors."""

    def __init__(self, message: str, *, config_path: Path | None = None, **kwargs):
        solution = kwargs.pop("solution", None)
        if not solution and config_path:
            solution = f"Check your configuration file at {config_path}"
        super().__init__(
            message,
            ErrorCategory.CONFIGURATION,
            solution=solution,
            **kwargs,
        )


class DependencyError(DiscVaultError):
    """Missing or broken dependency errors."""

    def __init__(
        self,
        dependency: str,
        *,
        install_command: str | None = None,
        **kwargs,
    ):
        message = f"Required dependency '{dependency}' is not available"
        solution = kwargs.pop("solution", None)
        if not solution and install_command:
            solution = f"Install with: {install_command}"
        super().__init__(
            message,
            ErrorCategory.DEPENDENCY,
            solution=solution,
            recoverable=False,
            **kwargs,
        )
        self.dependency = dependency


class ExternalToolError(DiscVaultError):
    """External tool execution errors."""

    def __init__(
        self,
        tool: str,
        exit_code: int | None = None,
        stderr: str | None = None,
        **kwargs,
    ):
        message = f"{tool} failed"
        if exit_code is not None:
            message += f" with exit code {exit_code}"

        details = kwargs.pop("details", stderr)
        solution = kwargs.pop(
            "solution",
            f"Check {tool} is properly installed and configured",
        )

        super().__init__(
            message,
            ErrorCategory.EXTERNAL_TOOL,
            details=details,
            solution=solution,
            **kwargs,
        )


class ArchiveFailure(DiscVaultError):
    """A failed archival attempt carrying its failure classification."""

    kind = FailureKind.HARDWARE_FAULT
    default_category = ErrorCategory.HARDWARE

    def __init__(self, message: str, *, device: str | None = None, **kwargs):
        category = kwargs.pop("category", self.default_category)
        super().__init__(message, category, **kwargs)
        self.device = device


class TransientReadError(ArchiveFailure):
    """Read error or short read from a drive."""

    kind = FailureKind.TRANSIENT_IO


class DriveTimeoutError(ArchiveFailure):
    """A drive took longer than the configured limit."""

    kind = FailureKind.TIMEOUT


class DriveOfflineError(ArchiveFailure):
    """The drive disappeared from inventory while a job was active."""

    kind = FailureKind.DRIVE_OFFLINE

    def __init__(self, device: str, **kwargs):
        super().__init__(f"Drive {device} went offline", device=device, **kwargs)


class ArchiveWriteError(ArchiveFailure):
    """Writing the staged image or the manifest failed."""

    kind = FailureKind.ARCHIVE_WRITE
    default_category = ErrorCategory.FILESYSTEM


class VerificationMismatchError(ArchiveFailure):
    """The verification digest did not match the first read."""

    kind = FailureKind.VERIFICATION_MISMATCH
    default_category = ErrorCategory.MEDIA

    def __init__(self, expected: str, actual: str, **kwargs):
        super().__init__(
            f"Verification digest {actual[:12]} does not match {expected[:12]}",
            **kwargs,
        )
        self.expected = expected
        self.actual = actual


class UnsupportedMediaError(ArchiveFailure):
    """The disc layout cannot be read or is not supported."""

    kind = FailureKind.PERMANENT_MEDIA
    default_category = ErrorCategory.MEDIA


class DecryptionError(ArchiveFailure):
    """A protected disc could not be opened for descrambled reading."""

    kind = FailureKind.DECRYPTION
    default_category = ErrorCategory.MEDIA


class OperatorCancelled(Exception):
    """Raised at a pipeline checkpoint after the operator cancelled the job."""

    def __init__(self, job_id: int | None = None):
        super().__init__(f"Job {job_id} cancelled by operator")
        self.job_id = job_id


def check_dependencies() -> list[DependencyError]:
    """Check for missing system tools and return list of errors."""
    errors = []

    tools = [
        ("lsscsi", "sudo apt install lsscsi", "lsscsi lists the optical drives"),
        ("blkid", "sudo apt install util-linux", "blkid detects inserted discs"),
        ("isoinfo", "sudo apt install genisoimage", "isoinfo reads disc layouts"),
        ("eject", "sudo apt install eject", "eject opens and closes drive trays"),
    ]

    for binary, install_command, details in tools:
        if not shutil.which(binary):
            errors.append(
                DependencyError(
                    binary,
                    install_command=install_command,
                    details=details,
                ),
            )

    return errors
