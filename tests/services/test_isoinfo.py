"""Tests for isoinfo layout reading."""

import subprocess
from unittest.mock import Mock, patch

import pytest

from discvault.error_handling import (
    DependencyError,
    DriveTimeoutError,
    UnsupportedMediaError,
)
from discvault.services.isoinfo import IsoInfoReader, has_video_ts, parse_isoinfo

DESCRIPTOR = """\
CD-ROM is in ISO 9660 format
System id: LINUX
Volume id: FAMILY_2004
Volume set id:
Logical block size is: 2048
Volume size is: 2295104
"""

LISTING = """\
/VIDEO_TS
/VIDEO_TS/VIDEO_TS.IFO;1
/AUDIO_TS
"""


def completed(stdout="", returncode=0, stderr=""):
    return Mock(stdout=stdout, returncode=returncode, stderr=stderr)


class TestParsing:
    def test_parse_descriptor(self):
        layout = parse_isoinfo(DESCRIPTOR)

        assert layout.label == "FAMILY_2004"
        assert layout.block_size == 2048
        assert layout.blocks == 2295104
        assert layout.length == 2295104 * 2048

    def test_missing_sizes(self):
        with pytest.raises(UnsupportedMediaError):
            parse_isoinfo("Volume id: X\n")

    def test_blank_label(self):
        layout = parse_isoinfo(DESCRIPTOR.replace("FAMILY_2004", ""))

        assert layout.label is None

    def test_video_ts_detection(self):
        assert has_video_ts(LISTING)
        assert not has_video_ts("/PHOTOS\n/PHOTOS/IMG_0001.JPG;1\n")


class TestIsoInfoReader:
    @patch("subprocess.run")
    def test_data_disc(self, mock_run, config):
        mock_run.side_effect = [completed(DESCRIPTOR), completed("/PHOTOS\n")]

        layout = IsoInfoReader(config).read_layout("/dev/sr0")

        assert layout.label == "FAMILY_2004"
        assert layout.video_dvd is False

    @patch("subprocess.run")
    def test_video_dvd(self, mock_run, config):
        mock_run.side_effect = [completed(DESCRIPTOR), completed(LISTING)]

        assert IsoInfoReader(config).read_layout("/dev/sr0").video_dvd is True

    @patch("subprocess.run")
    def test_listing_failure_is_tolerated(self, mock_run, config):
        mock_run.side_effect = [completed(DESCRIPTOR), completed(returncode=1)]

        assert IsoInfoReader(config).read_layout("/dev/sr0").video_dvd is False

    @patch("subprocess.run")
    def test_unreadable_descriptor_is_permanent(self, mock_run, config):
        mock_run.return_value = completed(returncode=5, stderr="no pvd")

        with pytest.raises(UnsupportedMediaError):
            IsoInfoReader(config).read_layout("/dev/sr0")

    @patch("subprocess.run", side_effect=subprocess.TimeoutExpired("isoinfo", 30))
    def test_timeout_is_transient(self, mock_run, config):
        with pytest.raises(DriveTimeoutError):
            IsoInfoReader(config).read_layout("/dev/sr0")

    @patch("subprocess.run", side_effect=FileNotFoundError)
    def test_missing_binary(self, mock_run, config):
        with pytest.raises(DependencyError):
            IsoInfoReader(config).read_layout("/dev/sr0")
