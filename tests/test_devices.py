"""
Tests for glassusb.storage.devices module.

This test suite covers:
- Running host tools and collecting their output
- Destination type and geometry detection
- Removable disk enumeration (system disks filtered out)
- Human-readable formatting functions
"""

import json
import subprocess
from unittest.mock import Mock, patch

import pytest

from glassusb.domain.models import DiskGeometry
from glassusb.storage import devices


class TestHumanSize:
    """Tests for human_size() function."""

    def test_bytes(self):
        assert devices.human_size(500) == "500.0B"

    def test_kilobytes(self):
        assert devices.human_size(1536) == "1.5KB"

    def test_gigabytes(self):
        assert devices.human_size(16106127360) == "15.0GB"

    def test_none_value(self):
        assert devices.human_size(None) == "0B"

    def test_very_large(self):
        assert devices.human_size(10 * 1024**5) == "10.0PB"


class TestFormatDeviceLabel:
    """Tests for format_device_label() function."""

    def test_with_device_dict(self, mock_usb_device):
        assert devices.format_device_label(mock_usb_device) == (
            "/dev/sdb SanDisk Ultra Fit (29.8GB)"
        )

    def test_removes_decimal_zero(self):
        device = {"name": "sdc", "size": "16106127360"}
        assert devices.format_device_label(device) == "/dev/sdc 15GB"

    def test_with_string_name(self):
        assert devices.format_device_label("sda") == "sda"

    def test_with_none(self):
        assert devices.format_device_label(None) == ""


class TestRunCommand:
    @patch("glassusb.storage.devices.subprocess.run")
    def test_captures_text_output(self, mock_run):
        mock_run.return_value = Mock(returncode=0, stdout="ok\n", stderr="")

        result = devices.run_command(["blockdev", "--getss", "/dev/sdb"])

        assert result.stdout == "ok\n"
        mock_run.assert_called_once_with(
            ["blockdev", "--getss", "/dev/sdb"], check=True, text=True, capture_output=True
        )

    @patch("glassusb.storage.devices.subprocess.run")
    def test_reraises_failures(self, mock_run, failed_process):
        mock_run.side_effect = failed_process(["parted"], stderr="Error")

        with pytest.raises(subprocess.CalledProcessError):
            devices.run_command(["parted"])


class TestCommandOutput:
    def test_combines_stdout_and_stderr(self, failed_process):
        error = failed_process(["mkfs.ntfs"], stdout="Cluster size 4096\n", stderr=" busy ")

        assert devices.command_output(error) == "Cluster size 4096\nbusy"

    def test_empty_streams(self, failed_process):
        assert devices.command_output(failed_process(["sync"])) == ""

    def test_os_error(self):
        error = FileNotFoundError(2, "No such file or directory", "ms-sys")

        assert "No such file or directory" in devices.command_output(error)


class TestIsBlockDevice:
    def test_regular_file(self, tmp_path):
        path = tmp_path / "disk.img"
        path.write_bytes(b"")

        assert devices.is_block_device(str(path)) is False

    def test_missing_path(self, tmp_path):
        assert devices.is_block_device(str(tmp_path / "missing")) is False

    @patch("glassusb.storage.devices.os.stat")
    def test_block_device(self, mock_stat):
        mock_stat.return_value = Mock(st_mode=0o060660)

        assert devices.is_block_device("/dev/sdb") is True


class TestReadDiskGeometry:
    def test_regular_file_uses_512_byte_blocks(self, tmp_path):
        path = tmp_path / "disk.img"
        path.write_bytes(b"\x00" * (512 * 100 + 17))

        geometry = devices.read_disk_geometry(str(path))

        assert geometry == DiskGeometry(logical_block_size=512, total_blocks=100)

    @patch("glassusb.storage.devices.run_command")
    @patch("glassusb.storage.devices.is_block_device", return_value=True)
    def test_block_device_uses_blockdev(self, mock_is_block, mock_run, completed_process):
        mock_run.side_effect = [
            completed_process(stdout="4096\n"),
            completed_process(stdout="64023150592\n"),
        ]

        geometry = devices.read_disk_geometry("/dev/sdb")

        assert geometry.logical_block_size == 4096
        assert geometry.total_blocks == 64023150592 // 4096
        assert [c.args[0] for c in mock_run.call_args_list] == [
            ["blockdev", "--getss", "/dev/sdb"],
            ["blockdev", "--getsize64", "/dev/sdb"],
        ]

    def test_missing_path_raises(self, tmp_path):
        with pytest.raises(OSError):
            devices.read_disk_geometry(str(tmp_path / "missing"))

    @patch("glassusb.storage.devices.run_command")
    @patch("glassusb.storage.devices.is_block_device", return_value=True)
    def test_blockdev_failure_propagates(self, mock_is_block, mock_run, failed_process):
        mock_run.side_effect = failed_process(["blockdev"], stderr="Permission denied")

        with pytest.raises(subprocess.CalledProcessError):
            devices.read_disk_geometry("/dev/sdb")


class TestListUsbDisks:
    """Tests for list_usb_disks()."""

    @patch("glassusb.storage.devices.run_command")
    def test_system_disk_filtered(self, mock_run, mock_lsblk_output, completed_process):
        mock_run.return_value = completed_process(stdout=mock_lsblk_output)

        disks = devices.list_usb_disks()

        assert [disk["name"] for disk in disks] == ["sdb"]

    @patch("glassusb.storage.devices.run_command")
    def test_fixed_disks_and_partitions_skipped(self, mock_run, completed_process):
        mock_run.return_value = completed_process(
            stdout=json.dumps(
                {
                    "blockdevices": [
                        {"name": "sda", "type": "disk", "rm": False, "tran": "sata"},
                        {"name": "sr0", "type": "rom", "rm": True, "tran": "usb"},
                        {"name": "mmcblk0", "type": "disk", "rm": "1", "tran": None},
                    ]
                }
            )
        )

        assert [disk["name"] for disk in devices.list_usb_disks()] == ["mmcblk0"]

    @patch("glassusb.storage.devices.run_command")
    def test_removable_disk_holding_root_is_skipped(self, mock_run, completed_process):
        mock_run.return_value = completed_process(
            stdout=json.dumps(
                {
                    "blockdevices": [
                        {
                            "name": "sda",
                            "type": "disk",
                            "tran": "usb",
                            "children": [{"name": "sda2", "mountpoint": "/"}],
                        }
                    ]
                }
            )
        )

        assert devices.list_usb_disks() == []

    @patch("glassusb.storage.devices.run_command")
    def test_lsblk_failure(self, mock_run, failed_process):
        mock_run.side_effect = failed_process(["lsblk"])

        assert devices.list_usb_disks() == []

    @patch("glassusb.storage.devices.run_command")
    def test_invalid_json(self, mock_run, completed_process):
        mock_run.return_value = completed_process(stdout="not json")

        assert devices.list_usb_disks() == []
