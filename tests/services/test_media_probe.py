"""Tests for blkid media probing."""

import subprocess
from unittest.mock import Mock, patch

import pytest

from discvault.error_handling import DependencyError, ExternalToolError
from discvault.services.media_probe import BlkidMediaProbe, parse_blkid_export


def completed(stdout="", returncode=0, stderr=""):
    return Mock(stdout=stdout, returncode=returncode, stderr=stderr)


class TestBlkidMediaProbe:
    def test_parse_export(self):
        assert parse_blkid_export("LABEL=HOLIDAY\nTYPE=iso9660\n") == {
            "LABEL": "HOLIDAY",
            "TYPE": "iso9660",
        }

    @patch("subprocess.run")
    def test_disc_present(self, mock_run, config):
        mock_run.return_value = completed("DEVNAME=/dev/sr0\nLABEL=HOLIDAY\nTYPE=udf\n")

        status = BlkidMediaProbe(config).probe("/dev/sr0")

        assert status.present is True
        assert status.label == "HOLIDAY"
        assert status.fs_type == "udf"
        assert mock_run.call_args[0][0] == ["blkid", "-p", "-o", "export", "/dev/sr0"]

    @patch("subprocess.run")
    def test_no_disc(self, mock_run, config):
        mock_run.return_value = completed(returncode=2)

        assert BlkidMediaProbe(config).probe("/dev/sr0").present is False

    @patch("subprocess.run")
    def test_ambivalent_signatures_count_as_present(self, mock_run, config):
        mock_run.return_value = completed(returncode=8)

        status = BlkidMediaProbe(config).probe("/dev/sr0")

        assert status.present is True
        assert status.fs_type is None

    @patch("subprocess.run")
    def test_unexpected_exit(self, mock_run, config):
        mock_run.return_value = completed(returncode=4, stderr="boom")

        with pytest.raises(ExternalToolError):
            BlkidMediaProbe(config).probe("/dev/sr0")

    @patch("subprocess.run", side_effect=FileNotFoundError)
    def test_missing_binary(self, mock_run, config):
        with pytest.raises(DependencyError):
            BlkidMediaProbe(config).probe("/dev/sr0")

    @patch("subprocess.run", side_effect=subprocess.TimeoutExpired("blkid", 10))
    def test_timeout(self, mock_run, config):
        with pytest.raises(ExternalToolError):
            BlkidMediaProbe(config).probe("/dev/sr0")
