"""Filesystem creation and host capability probing.

Supported Filesystems:
    exfat:  Preferred; no 4 GB file size limit, booted through UEFI:NTFS
    ntfs:   Booted through UEFI:NTFS as well
    fat32:  Boots natively on UEFI firmware; files over 4 GB are not copied

A filesystem is available when its mkfs tool is on PATH. The probe runs once at
startup and drives the default choice (first available in preference order)
and the rejection of unavailable choices before anything is written.

Operations:
    - probe_available_filesystems(): Filesystems whose mkfs tool is installed
    - default_filesystem(): First available filesystem in preference order
    - resolve_filesystem(): Turn a user choice into a usable Filesystem
    - format_partition(): Create a filesystem on a partition

Implementation Details:
    - Uses mkfs.vfat -F 32, mkfs.exfat and mkfs.ntfs -Q (quick format)
    - A non-zero exit raises FormatError carrying the tool's output verbatim

Example:
    >>> available = probe_available_filesystems()
    >>> filesystem = resolve_filesystem("ntfs", available)
    >>> format_partition("/dev/sdb1", filesystem)
"""

from __future__ import annotations

import shutil
import subprocess
from typing import Iterable, Optional

from glassusb.domain.models import Filesystem
from glassusb.logging import LoggerFactory
from glassusb.storage.devices import command_output, run_command
from glassusb.storage.exceptions import (
    FormatError,
    ToolNotFoundError,
    UnsupportedFilesystemError,
)

log = LoggerFactory.for_device()

FILESYSTEM_TOOLS = {
    Filesystem.EXFAT: "mkfs.exfat",
    Filesystem.NTFS: "mkfs.ntfs",
    Filesystem.FAT32: "mkfs.vfat",
}

FILESYSTEM_PREFERENCE = (Filesystem.EXFAT, Filesystem.NTFS, Filesystem.FAT32)


def probe_available_filesystems() -> frozenset[Filesystem]:
    """Return the filesystems whose formatting tool is installed."""
    available = set()
    for filesystem in FILESYSTEM_PREFERENCE:
        tool = FILESYSTEM_TOOLS[filesystem]
        if shutil.which(tool):
            available.add(filesystem)
        else:
            log.debug(f"{tool} not found, {filesystem.display_name} unavailable")
    return frozenset(available)


def default_filesystem(available: Iterable[Filesystem]) -> Optional[Filesystem]:
    available = set(available)
    for filesystem in FILESYSTEM_PREFERENCE:
        if filesystem in available:
            return filesystem
    return None


def resolve_filesystem(
    choice: Optional[str], available: Iterable[Filesystem]
) -> Filesystem:
    """Return the Filesystem for a user choice, or the default if none given.

    Raises:
        UnsupportedFilesystemError: If the name is not a known filesystem
        ToolNotFoundError: If its mkfs tool (or every mkfs tool) is missing
    """
    available = frozenset(available)
    if choice is None:
        filesystem = default_filesystem(available)
        if filesystem is None:
            raise ToolNotFoundError(
                " or ".join(FILESYSTEM_TOOLS[fs] for fs in FILESYSTEM_PREFERENCE),
                "no supported filesystem can be created on this host",
            )
        return filesystem
    try:
        filesystem = Filesystem(choice.strip().lower())
    except ValueError:
        raise UnsupportedFilesystemError(
            choice, tuple(fs.value for fs in FILESYSTEM_PREFERENCE)
        ) from None
    if filesystem not in available:
        raise ToolNotFoundError(
            FILESYSTEM_TOOLS[filesystem],
            f"needed to create {filesystem.display_name} filesystems",
        )
    return filesystem


def format_command(partition: str, filesystem: Filesystem) -> list[str]:
    if filesystem is Filesystem.FAT32:
        return ["mkfs.vfat", "-F", "32", partition]
    if filesystem is Filesystem.EXFAT:
        return ["mkfs.exfat", partition]
    if filesystem is Filesystem.NTFS:
        return ["mkfs.ntfs", "-Q", "-v", partition]
    raise UnsupportedFilesystemError(str(filesystem))


def _run_formatter(partition: str, filesystem: Filesystem) -> None:
    command = format_command(partition, filesystem)
    log.debug(f"Formatting {partition} as {filesystem.display_name}")
    try:
        run_command(command)
    except (subprocess.CalledProcessError, OSError) as error:
        log.error(f"Command failed: {' '.join(command)}")
        raise FormatError(
            partition, filesystem.display_name, command_output(error)
        ) from error
    log.info(f"Created {filesystem.display_name} filesystem on {partition}")


def make_fat32(partition: str) -> None:
    _run_formatter(partition, Filesystem.FAT32)


def make_exfat(partition: str) -> None:
    _run_formatter(partition, Filesystem.EXFAT)


def make_ntfs(partition: str) -> None:
    _run_formatter(partition, Filesystem.NTFS)


FORMATTERS = {
    Filesystem.FAT32: make_fat32,
    Filesystem.EXFAT: make_exfat,
    Filesystem.NTFS: make_ntfs,
}


def format_partition(partition: str, filesystem: Filesystem) -> None:
    """Create filesystem on partition.

    Raises:
        FormatError: If the mkfs tool fails; carries its output
    """
    FORMATTERS[filesystem](partition)
