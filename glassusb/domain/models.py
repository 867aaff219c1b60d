"""Domain model for building Windows installation drives.

This module holds the immutable values passed between the CLI, the geometry
planner and the flash orchestrator.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from glassusb.storage.exceptions import ConfigurationError


# ==============================================================================
# Request Domain
# ==============================================================================


class Filesystem(Enum):
    """Filesystem holding the Windows installation files."""

    EXFAT = "exfat"
    NTFS = "ntfs"
    FAT32 = "fat32"

    @property
    def display_name(self) -> str:
        return {"exfat": "exFAT", "ntfs": "NTFS", "fat32": "FAT32"}[self.value]


class PartitionScheme(Enum):
    """Partition table format."""

    MBR = "mbr"  # Boots on BIOS and UEFI
    GPT = "gpt"  # UEFI only (Windows 8 or newer PCs)


@dataclass(frozen=True)
class FlashRequest:
    """A flash operation request.

    Built once from CLI or wizard input and passed unchanged through the
    whole pipeline.
    """

    source_image: str
    destination_device: str
    filesystem: Filesystem
    partition_scheme: PartitionScheme = PartitionScheme.MBR
    skip_validation: bool = False

    @property
    def use_gpt(self) -> bool:
        return self.partition_scheme is PartitionScheme.GPT

    def validate(self) -> None:
        """Check the request is internally consistent.

        Raises:
            ConfigurationError: If a field has the wrong type or is empty
        """
        if not self.source_image:
            raise ConfigurationError("No source image specified")
        if not self.destination_device:
            raise ConfigurationError("No destination device specified")
        if not isinstance(self.filesystem, Filesystem):
            raise ConfigurationError(f"Invalid filesystem: {self.filesystem!r}")
        if not isinstance(self.partition_scheme, PartitionScheme):
            raise ConfigurationError(
                f"Invalid partition scheme: {self.partition_scheme!r}"
            )


# ==============================================================================
# Disk Geometry Domain
# ==============================================================================


@dataclass(frozen=True)
class DiskGeometry:
    """Size of the destination device, read once per run."""

    logical_block_size: int  # Bytes per logical block (usually 512)
    total_blocks: int

    @property
    def size_bytes(self) -> int:
        return self.logical_block_size * self.total_blocks


class PartitionRole(Enum):
    """What a planned partition is used for."""

    ESP_BOOTSTRAP = "esp"  # UEFI:NTFS, or the only partition of a FAT32 drive
    WINDOWS_DATA = "data"  # exFAT/NTFS partition with the image contents


@dataclass(frozen=True)
class PartitionSpec:
    """One partition; block numbers are inclusive."""

    start_block: int
    end_block: int
    role: PartitionRole
    bootable: bool = False

    @property
    def block_count(self) -> int:
        return self.end_block - self.start_block + 1


@dataclass(frozen=True)
class PartitionPlan:
    """Ordered partitions for one device, in partition-number order."""

    partitions: tuple[PartitionSpec, ...]
    use_gpt: bool
    logical_block_size: int

    @property
    def bootstrap_number(self) -> Optional[int]:
        """Partition number receiving the UEFI:NTFS payload, if any."""
        if len(self.partitions) < 2:
            return None
        for number, spec in enumerate(self.partitions, start=1):
            if spec.role is PartitionRole.ESP_BOOTSTRAP:
                return number
        return None

    @property
    def data_number(self) -> int:
        """Partition number that receives the image contents."""
        for number, spec in enumerate(self.partitions, start=1):
            if spec.role is PartitionRole.WINDOWS_DATA:
                return number
        return 1

    def partition(self, number: int) -> PartitionSpec:
        """Return the 1-based partition; raises IndexError when out of range."""
        if number < 1:
            raise IndexError(f"partition number must be 1 or greater, got {number}")
        return self.partitions[number - 1]
