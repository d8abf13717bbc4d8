"""Tests for the error taxonomy and user-facing error display."""

import logging
from unittest.mock import patch

from discvault.error_handling import (
    ArchiveWriteError,
    ConfigurationError,
    DecryptionError,
    DependencyError,
    DiscVaultError,
    DriveOfflineError,
    DriveTimeoutError,
    ErrorCategory,
    ExternalToolError,
    FailureKind,
    OperatorCancelled,
    TransientReadError,
    UnsupportedMediaError,
    VerificationMismatchError,
    check_dependencies,
)


class TestDiscVaultError:
    """Test the base DiscVaultError class."""

    def test_basic_error_creation(self):
        error = DiscVaultError(
            "Test error message",
            ErrorCategory.CONFIGURATION,
            solution="Fix your config",
        )

        assert error.message == "Test error message"
        assert error.category == ErrorCategory.CONFIGURATION
        assert error.solution == "Fix your config"
        assert error.recoverable is True
        assert error.log_level == logging.ERROR

    def test_error_display(self, capsys):
        error = DiscVaultError(
            "Configuration is invalid",
            ErrorCategory.CONFIGURATION,
            solution="Check your config file",
            details="Missing archive_dir",
        )

        error.display_to_user()
        captured = capsys.readouterr()

        assert "Configuration Error" in captured.out
        assert "Configuration is invalid" in captured.out
        assert "Check your config file" in captured.out
        assert "Missing archive_dir" in captured.out

    def test_non_recoverable_error(self, capsys):
        error = DiscVaultError("Fatal", ErrorCategory.SYSTEM, recoverable=False)

        error.display_to_user()

        assert "requires intervention" in capsys.readouterr().out

    @patch("discvault.error_handling.logger")
    def test_error_logging(self, mock_logger):
        original = ValueError("Original error")
        error = DiscVaultError(
            "Wrapped error",
            ErrorCategory.SYSTEM,
            original_error=original,
            log_level=logging.WARNING,
        )

        error.display_to_user()

        mock_logger.log.assert_called_once_with(
            logging.WARNING,
            "%s: %s",
            "system",
            "Wrapped error",
            exc_info=original,
        )


class TestSpecificErrors:
    """Test specific error types basic functionality."""

    def test_configuration_error_points_at_file(self, tmp_path):
        error = ConfigurationError("Invalid", config_path=tmp_path / "c.toml")

        assert error.category == ErrorCategory.CONFIGURATION
        assert "c.toml" in error.solution

    def test_dependency_error(self):
        error = DependencyError("lsscsi", install_command="sudo apt install lsscsi")

        assert error.category == ErrorCategory.DEPENDENCY
        assert error.dependency == "lsscsi"
        assert "lsscsi" in str(error)
        assert error.recoverable is False
        assert "apt install lsscsi" in error.solution

    def test_external_tool_error(self):
        error = ExternalToolError("blkid", 4, "bad device")

        assert error.category == ErrorCategory.EXTERNAL_TOOL
        assert "exit code 4" in error.message
        assert error.details == "bad device"


class TestArchiveFailures:
    """Each archive failure carries its failure kind."""

    def test_kinds(self):
        assert TransientReadError("x").kind is FailureKind.TRANSIENT_IO
        assert DriveTimeoutError("x").kind is FailureKind.TIMEOUT
        assert DriveOfflineError("/dev/sr0").kind is FailureKind.DRIVE_OFFLINE
        assert ArchiveWriteError("x").kind is FailureKind.ARCHIVE_WRITE
        assert UnsupportedMediaError("x").kind is FailureKind.PERMANENT_MEDIA
        assert DecryptionError("x").kind is FailureKind.DECRYPTION

    def test_categories(self):
        assert ArchiveWriteError("x").category == ErrorCategory.FILESYSTEM
        assert UnsupportedMediaError("x").category == ErrorCategory.MEDIA
        assert TransientReadError("x").category == ErrorCategory.HARDWARE

    def test_offline_error_names_device(self):
        error = DriveOfflineError("/dev/sr3")

        assert error.device == "/dev/sr3"
        assert "/dev/sr3" in error.message

    def test_verification_mismatch_keeps_digests(self):
        error = VerificationMismatchError("a" * 64, "b" * 64, device="/dev/sr0")

        assert error.expected == "a" * 64
        assert error.actual == "b" * 64
        assert error.kind is FailureKind.VERIFICATION_MISMATCH

    def test_operator_cancel_is_not_a_failure(self):
        assert not isinstance(OperatorCancelled(7), DiscVaultError)
        assert OperatorCancelled(7).job_id == 7


class TestDependencyChecking:
    """Test dependency checking functionality."""

    @patch("shutil.which")
    def test_check_dependencies_all_present(self, mock_which):
        mock_which.return_value = "/usr/bin/tool"

        assert check_dependencies() == []

    @patch("shutil.which")
    def test_check_dependencies_missing(self, mock_which):
        mock_which.return_value = None

        errors = check_dependencies()

        assert {e.dependency for e in errors} == {"lsscsi", "blkid", "isoinfo", "eject"}

