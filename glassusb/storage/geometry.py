"""Partition layout planning for Windows installation drives.

Layouts:
    Single partition (FAT32):
        - 1 MiB alignment gap
        - One bootable partition spanning the rest of the disk

    Two partitions (exFAT/NTFS with UEFI:NTFS):
        - 1 MiB alignment gap
        - Windows data partition
        - 1 MiB bootstrap partition holding the UEFI:NTFS image
      (the bootstrap partition may also be placed first)

GPT layouts keep the final 2048 logical blocks free for the backup header and
partition entries, the same reservation fdisk makes.

All functions here are pure; writing a plan to a device is handled by
glassusb.storage.partition_table.
"""

from __future__ import annotations

from glassusb.domain.models import (
    DiskGeometry,
    Filesystem,
    PartitionPlan,
    PartitionRole,
    PartitionScheme,
    PartitionSpec,
)
from glassusb.storage.exceptions import GeometryError

MIB = 1024 * 1024
GPT_TRAILER_BLOCKS = 2048
MBR_MAX_BLOCKS = 2**32


def blocks_for(size_bytes: int, block_size: int) -> int:
    """Return the number of blocks needed to hold size_bytes."""
    return -(-size_bytes // block_size)


def _usable_end(geometry: DiskGeometry, use_gpt: bool) -> int:
    """Last block a partition may occupy."""
    end = geometry.total_blocks - 1
    if use_gpt:
        end -= GPT_TRAILER_BLOCKS
    return end


def _check_geometry(geometry: DiskGeometry) -> None:
    if geometry.logical_block_size <= 0:
        raise GeometryError(
            f"Invalid logical block size: {geometry.logical_block_size}"
        )
    if geometry.total_blocks <= 0:
        raise GeometryError(f"Invalid disk size: {geometry.total_blocks} blocks")


def _check_plan(plan: PartitionPlan, geometry: DiskGeometry) -> PartitionPlan:
    for number, spec in enumerate(plan.partitions, start=1):
        if spec.block_count <= 0:
            raise GeometryError(
                f"Disk of {geometry.total_blocks} blocks "
                f"({geometry.logical_block_size} bytes each) is too small: "
                f"partition {number} would have {spec.block_count} blocks"
            )
    if not plan.use_gpt and plan.partitions[-1].end_block >= MBR_MAX_BLOCKS:
        raise GeometryError(
            f"Disk of {geometry.total_blocks} blocks is too large for an MBR "
            "partition table, use GPT instead"
        )
    return plan


def plan_single_partition(geometry: DiskGeometry, use_gpt: bool) -> PartitionPlan:
    """Plan one bootable partition covering the disk after a 1 MiB gap."""
    _check_geometry(geometry)
    start = blocks_for(MIB, geometry.logical_block_size)
    only = PartitionSpec(
        start_block=start,
        end_block=_usable_end(geometry, use_gpt),
        role=PartitionRole.ESP_BOOTSTRAP,
        bootable=True,
    )
    plan = PartitionPlan(
        partitions=(only,),
        use_gpt=use_gpt,
        logical_block_size=geometry.logical_block_size,
    )
    return _check_plan(plan, geometry)


def plan_two_partition_layout(
    geometry: DiskGeometry, use_gpt: bool, bootstrap_first: bool
) -> PartitionPlan:
    """Plan a 1 MiB bootstrap partition plus a data partition.

    The partition occupying slot 1 is marked bootable.
    """
    _check_geometry(geometry)
    gap = blocks_for(MIB, geometry.logical_block_size)
    bootstrap_blocks = blocks_for(MIB, geometry.logical_block_size)
    last = _usable_end(geometry, use_gpt)

    if bootstrap_first:
        bootstrap = PartitionSpec(
            start_block=gap,
            end_block=gap + bootstrap_blocks - 1,
            role=PartitionRole.ESP_BOOTSTRAP,
            bootable=True,
        )
        data = PartitionSpec(
            start_block=bootstrap.end_block + 1,
            end_block=last,
            role=PartitionRole.WINDOWS_DATA,
        )
        partitions = (bootstrap, data)
    else:
        data = PartitionSpec(
            start_block=gap,
            end_block=last - bootstrap_blocks,
            role=PartitionRole.WINDOWS_DATA,
            bootable=True,
        )
        bootstrap = PartitionSpec(
            start_block=last - bootstrap_blocks + 1,
            end_block=last,
            role=PartitionRole.ESP_BOOTSTRAP,
        )
        partitions = (data, bootstrap)

    plan = PartitionPlan(
        partitions=partitions,
        use_gpt=use_gpt,
        logical_block_size=geometry.logical_block_size,
    )
    return _check_plan(plan, geometry)


# UEFI:NTFS goes after the data partition for every two-partition filesystem
BOOTSTRAP_FIRST = {
    Filesystem.EXFAT: False,
    Filesystem.NTFS: False,
}


def plan_for_request(
    geometry: DiskGeometry, scheme: PartitionScheme, filesystem: Filesystem
) -> PartitionPlan:
    """Return the layout matching a filesystem choice."""
    use_gpt = scheme is PartitionScheme.GPT
    if filesystem is Filesystem.FAT32:
        return plan_single_partition(geometry, use_gpt)
    return plan_two_partition_layout(
        geometry, use_gpt, bootstrap_first=BOOTSTRAP_FIRST[filesystem]
    )
