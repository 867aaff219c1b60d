"""
Pytest configuration and shared fixtures for glassusb tests.

This module provides common fixtures and utilities used across all test modules.
"""

import io
import json
import subprocess
from datetime import datetime
from typing import Any, Dict, List, Optional
from unittest.mock import Mock

import pytest

from glassusb.config import settings
from glassusb.domain.models import (
    DiskGeometry,
    Filesystem,
    FlashRequest,
    PartitionScheme,
)
from glassusb.storage.image import FileTreeNode


# ==============================================================================
# In-memory file trees
# ==============================================================================


class MemoryNode(FileTreeNode):
    """FileTreeNode backed by bytes held in memory."""

    def __init__(
        self,
        name: str,
        data: Optional[bytes] = None,
        children: Optional[List["MemoryNode"]] = None,
        mode: Optional[int] = None,
    ):
        self.name = name
        self.data = data or b""
        self._children = list(children) if children is not None else None
        self.size = 0 if self._children is not None else len(self.data)
        if mode is None:
            mode = 0o755 if self._children is not None else 0o644
        self.mode = mode
        self.mtime = datetime(2024, 1, 1, 12, 0, 0)
        self.open_count = 0

    @classmethod
    def file(cls, name: str, data: bytes = b"") -> "MemoryNode":
        return cls(name, data=data)

    @classmethod
    def dir(cls, name: str, *children: "MemoryNode", mode=None) -> "MemoryNode":
        return cls(name, children=list(children), mode=mode)

    @property
    def is_dir(self) -> bool:
        return self._children is not None

    def children(self):
        return iter(self._children or [])

    def open(self):
        self.open_count += 1
        return io.BytesIO(self.data)


@pytest.fixture
def make_tree():
    """Fixture giving access to MemoryNode.file() and MemoryNode.dir()."""
    return MemoryNode


@pytest.fixture
def sample_tree():
    """
    Fixture providing a small Windows-like image tree.

    Layout:
        /setup.exe
        /bootmgr
        /sources/boot.wim
        /sources/install.wim
        /efi/boot/bootx64.efi
    """
    return MemoryNode.dir(
        "",
        MemoryNode.file("setup.exe", b"MZ" + bytes(range(256)) * 4),
        MemoryNode.file("bootmgr", b"\x00" * 1000),
        MemoryNode.dir(
            "sources",
            MemoryNode.file("boot.wim", b"MSWIM\x00\x00\x00" * 500),
            MemoryNode.file("install.wim", b"WIM" * 100),
        ),
        MemoryNode.dir(
            "efi",
            MemoryNode.dir("boot", MemoryNode.file("bootx64.efi", b"EFI" * 333)),
        ),
    )


# ==============================================================================
# Requests and geometry
# ==============================================================================


@pytest.fixture
def ntfs_request() -> FlashRequest:
    return FlashRequest(
        source_image="/isos/Win11.iso",
        destination_device="/dev/sdb",
        filesystem=Filesystem.NTFS,
        partition_scheme=PartitionScheme.MBR,
    )


@pytest.fixture
def disk_geometry() -> DiskGeometry:
    """A 16 GiB disk with 512-byte blocks."""
    return DiskGeometry(logical_block_size=512, total_blocks=16 * 1024 * 1024 * 2)


# ==============================================================================
# Settings isolation
# ==============================================================================


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    """Point settings at a temporary file and clear escape hatch variables."""
    monkeypatch.setattr(settings, "SETTINGS_PATH", tmp_path / "settings.json")
    for name in (
        settings.ALLOW_NON_BLOCK_DEVICE_ENV,
        settings.DISABLE_SIZE_CHECK_ENV,
        settings.UEFI_NTFS_IMAGE_ENV,
        settings.MS_SYS_PATH_ENV,
    ):
        monkeypatch.delenv(name, raising=False)
    settings.load_settings()
    yield
    settings.settings_store.values = dict(settings.DEFAULT_SETTINGS)


# ==============================================================================
# Device Mock Fixtures
# ==============================================================================


@pytest.fixture
def mock_usb_device() -> Dict[str, Any]:
    """
    Fixture providing a mock USB device dictionary.

    Returns:
        Dict representing a typical USB device as returned by lsblk -J -b.
    """
    return {
        "name": "sdb",
        "type": "disk",
        "size": 32010928128,
        "model": "Ultra Fit",
        "vendor": "SanDisk ",
        "tran": "usb",
        "rm": True,
        "mountpoint": None,
        "fstype": None,
        "label": None,
        "children": [
            {
                "name": "sdb1",
                "type": "part",
                "size": 32009879552,
                "mountpoint": "/media/user/USB",
                "fstype": "exfat",
                "label": "USB",
            }
        ],
    }


@pytest.fixture
def mock_system_disk() -> Dict[str, Any]:
    """Fixture providing the internal disk holding the root filesystem."""
    return {
        "name": "nvme0n1",
        "type": "disk",
        "size": 512110190592,
        "model": "Samsung SSD 980",
        "vendor": None,
        "tran": "nvme",
        "rm": False,
        "mountpoint": None,
        "children": [
            {"name": "nvme0n1p1", "type": "part", "mountpoint": "/boot/efi"},
            {"name": "nvme0n1p2", "type": "part", "mountpoint": "/"},
        ],
    }


@pytest.fixture
def mock_lsblk_output(mock_usb_device, mock_system_disk) -> str:
    """Fixture providing lsblk JSON output with a USB stick and a system disk."""
    return json.dumps({"blockdevices": [mock_system_disk, mock_usb_device]})


@pytest.fixture
def completed_process():
    """Factory for subprocess.CompletedProcess-like results."""

    def make(stdout: str = "", stderr: str = "", returncode: int = 0) -> Mock:
        return Mock(stdout=stdout, stderr=stderr, returncode=returncode)

    return make


@pytest.fixture
def failed_process():
    """Factory for CalledProcessError instances carrying tool output."""

    def make(command, stdout: str = "", stderr: str = "", returncode: int = 1):
        return subprocess.CalledProcessError(
            returncode, command, output=stdout, stderr=stderr
        )

    return make
