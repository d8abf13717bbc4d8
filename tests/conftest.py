"""Shared test configuration and fixtures."""

import logging

import pytest

from discvault.cli import cleanup_logging
from discvault.config import ArchiverConfig


@pytest.fixture(autouse=True)
def cleanup_logging_handlers():
    """Automatically cleanup logging handlers after each test to prevent ResourceWarnings."""
    yield
    cleanup_logging()


@pytest.fixture(autouse=True)
def reset_logging():
    """Reset logging configuration after each test."""
    yield
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        handler.close()
        root_logger.removeHandler(handler)
    root_logger.setLevel(logging.WARNING)


@pytest.fixture
def config(tmp_path):
    """Fast-cycling configuration rooted in a temporary directory."""
    return ArchiverConfig(
        archive_dir=tmp_path / "archive",
        log_dir=tmp_path / "logs",
        dvdcss_library=None,
        refresh_interval=0.02,
        queue_poll_interval=0.02,
        error_retry_interval=0.02,
        status_display_interval=1,
        backoff_base=0.0,
        read_chunk_blocks=2,
        max_attempts=3,
    )
