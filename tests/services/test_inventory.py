"""Tests for lsscsi drive inventory."""

import subprocess
from unittest.mock import Mock, patch

import pytest

from discvault.error_handling import DependencyError, ExternalToolError
from discvault.services.inventory import LsscsiInventory, parse_lsscsi

LSSCSI_OUTPUT = """\
[0:0:0:0]    disk    ATA      Samsung SSD 860  4B6Q  /dev/sda
[2:0:0:0]    cd/dvd  HL-DT-ST DVDRAM GH24NSD1 LG00  /dev/sr0
[3:0:0:0]    cd/dvd  ASUS     BW-16D1HT        3.10  /dev/sr1
[4:0:0:0]    cd/dvd  PIONEER  BD-RW   BDR-209M 1.10  -
"""


def completed(stdout="", returncode=0, stderr=""):
    return Mock(stdout=stdout, returncode=returncode, stderr=stderr)


class TestParseLsscsi:
    def test_only_optical_drives_with_nodes(self):
        entries = parse_lsscsi(LSSCSI_OUTPUT)

        assert [e.device for e in entries] == ["/dev/sr0", "/dev/sr1"]

    def test_fields(self):
        entry = parse_lsscsi(LSSCSI_OUTPUT)[0]

        assert entry.slot == "2:0:0:0"
        assert entry.vendor == "HL-DT-ST"
        assert entry.model == "DVDRAM GH24NSD1"
        assert entry.revision == "LG00"

    def test_garbage_ignored(self):
        assert parse_lsscsi("nonsense\n\n") == []


class TestLsscsiInventory:
    @patch("subprocess.run")
    def test_list_drives(self, mock_run, config):
        mock_run.return_value = completed(LSSCSI_OUTPUT)

        entries = LsscsiInventory(config).list_drives()

        assert len(entries) == 2
        assert mock_run.call_args[0][0] == ["lsscsi"]

    @patch("subprocess.run")
    def test_configured_drives_filter(self, mock_run, config):
        mock_run.return_value = completed(LSSCSI_OUTPUT)
        config = config.model_copy(update={"drives": ["/dev/sr1"]})

        entries = LsscsiInventory(config).list_drives()

        assert [e.device for e in entries] == ["/dev/sr1"]

    @patch("subprocess.run", side_effect=FileNotFoundError)
    def test_missing_binary(self, mock_run, config):
        with pytest.raises(DependencyError):
            LsscsiInventory(config).list_drives()

    @patch("subprocess.run", side_effect=subprocess.TimeoutExpired("lsscsi", 10))
    def test_timeout(self, mock_run, config):
        with pytest.raises(ExternalToolError):
            LsscsiInventory(config).list_drives()

    @patch("subprocess.run")
    def test_failure_exit(self, mock_run, config):
        mock_run.return_value = completed(returncode=1, stderr="bad")

        with pytest.raises(ExternalToolError):
            LsscsiInventory(config).list_drives()
