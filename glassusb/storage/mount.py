"""Mount, unmount and loop device helpers.

All acquisitions are paired with a release in a context manager:

    with loop_device("/tmp/disk.img") as device:
        with mounted_partition(partition_path(device, 2)) as mountpoint:
            ...

Releases are best-effort. A failing umount, losetup -d or rmdir is logged as a
warning and never replaces an exception raised inside the block.

Functions:
    - partition_path(): Partition node name for a device and partition number
    - wait_for_partition_node(): Wait for udev to create a partition node
    - mount_partition() / unmount_mountpoint(): Single mount and umount calls
    - mounted_partition(): Mount at a fresh temporary directory
    - attach_loop_device() / detach_loop_device() / loop_device(): losetup
    - unmount_device_partitions(): Unmount everything mounted from a device
"""

from __future__ import annotations

import contextlib
import os
import re
import subprocess
import tempfile
import time
from typing import Iterator

from glassusb.config import settings
from glassusb.logging import LoggerFactory
from glassusb.storage.devices import command_output, is_block_device, run_command
from glassusb.storage.exceptions import (
    LoopDeviceError,
    MountFailedError,
    UnmountFailedError,
)

log = LoggerFactory.for_system()

PROC_MOUNTS = "/proc/mounts"


def partition_path(device: str, number: int) -> str:
    """Return the partition node, e.g. /dev/sdb2 or /dev/loop0p2."""
    suffix = "p" if device[-1].isdigit() else ""
    return f"{device}{suffix}{number}"


def wait_for_partition_node(path: str, timeout: float = 5.0) -> bool:
    """Wait until a partition node exists, returning whether it appeared."""
    deadline = time.monotonic() + timeout
    while True:
        if os.path.exists(path):
            return True
        if time.monotonic() >= deadline:
            log.warning(f"Partition node {path} did not appear after {timeout}s")
            return False
        time.sleep(0.25)


def mount_partition(partition: str, mountpoint: str) -> None:
    try:
        run_command(["mount", partition, mountpoint])
    except (subprocess.CalledProcessError, OSError) as error:
        raise MountFailedError(partition, mountpoint, command_output(error)) from error
    log.debug(f"Mounted {partition} at {mountpoint}")


def unmount_mountpoint(target: str) -> None:
    try:
        run_command(["umount", target])
    except (subprocess.CalledProcessError, OSError) as error:
        raise UnmountFailedError(target, command_output(error)) from error
    log.debug(f"Unmounted {target}")


@contextlib.contextmanager
def mounted_partition(partition: str) -> Iterator[str]:
    """Mount partition at a new temporary directory, yielding its path.

    The directory is unmounted and removed on exit.
    """
    prefix = settings.get_setting("mount_prefix") or settings.DEFAULT_MOUNT_PREFIX
    mountpoint = tempfile.mkdtemp(prefix=prefix)
    try:
        mount_partition(partition, mountpoint)
        try:
            yield mountpoint
        finally:
            try:
                unmount_mountpoint(mountpoint)
            except UnmountFailedError as error:
                log.warning(str(error))
    finally:
        try:
            os.rmdir(mountpoint)
        except OSError as error:
            log.warning(f"Failed to remove mount point {mountpoint}: {error}")


def attach_loop_device(path: str) -> str:
    """Attach a regular file as a loop device with partition scanning."""
    try:
        result = run_command(["losetup", "--find", "--show", "--partscan", path])
    except (subprocess.CalledProcessError, OSError) as error:
        raise LoopDeviceError(
            f"Failed to set up loop device for {path}", command_output(error)
        ) from error
    device = result.stdout.strip()
    if not device:
        raise LoopDeviceError(f"losetup did not report a loop device for {path}")
    log.debug(f"Attached {path} as {device}")
    return device


def detach_loop_device(device: str) -> None:
    try:
        run_command(["losetup", "--detach", device])
    except (subprocess.CalledProcessError, OSError) as error:
        raise LoopDeviceError(
            f"Failed to detach loop device {device}", command_output(error)
        ) from error
    log.debug(f"Detached {device}")


@contextlib.contextmanager
def loop_device(path: str) -> Iterator[str]:
    """Attach path as a loop device for the duration of the block."""
    device = attach_loop_device(path)
    try:
        yield device
    finally:
        try:
            detach_loop_device(device)
        except LoopDeviceError as error:
            log.warning(str(error))


def _unescape_mount_field(field: str) -> str:
    # /proc/mounts escapes space, tab, newline and backslash as octal
    for escaped, raw in (("\\040", " "), ("\\011", "\t"), ("\\012", "\n"), ("\\134", "\\")):
        field = field.replace(escaped, raw)
    return field


def _device_source_pattern(device: str) -> re.Pattern:
    # The device itself or one of its partition nodes, as named by partition_path()
    suffix = "p" if device[-1].isdigit() else ""
    return re.compile(rf"{re.escape(device)}(?:{suffix}\d+)?")


def mounted_sources(device: str, mounts_path: str = PROC_MOUNTS) -> list[str]:
    """Return the mounted sources belonging to device, in mount order."""
    pattern = _device_source_pattern(device)
    try:
        with open(mounts_path, encoding="utf-8") as mounts:
            lines = mounts.read().splitlines()
    except OSError as error:
        log.debug(f"Cannot read {mounts_path}: {error}")
        return []
    sources = []
    for line in lines:
        fields = line.split()
        if not fields:
            continue
        source = _unescape_mount_field(fields[0])
        if pattern.fullmatch(source) and source not in sources:
            sources.append(source)
    return sources


def unmount_device_partitions(device: str) -> list[str]:
    """Unmount every filesystem mounted from device or its partitions.

    Does nothing when device is not a block device or nothing is mounted.
    Returns the sources that were unmounted.

    Raises:
        UnmountFailedError: If a mounted partition cannot be unmounted
    """
    if not is_block_device(device):
        log.debug(f"{device} is not a block device, nothing to unmount")
        return []
    sources = mounted_sources(device)
    # Later mounts may be stacked on earlier ones
    for source in reversed(sources):
        log.info(f"Unmounting {source}")
        unmount_mountpoint(source)
    return sources
