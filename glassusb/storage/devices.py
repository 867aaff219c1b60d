"""Block device discovery and inspection.

This module gathers the information the flash pipeline needs about the
destination: whether it is a block device, its logical block size and total
size, and (for the wizard) which removable disks are attached.

Device Detection:
    Uses lsblk with JSON output to enumerate block devices and their properties.
    Disks are offered as destinations only if they are removable or attached
    over USB and do not carry a system mountpoint (/, /boot, /boot/efi).

Geometry:
    Block devices are queried with `blockdev --getss` and `blockdev --getsize64`.
    Regular files (only allowed with GLASSUSB_ALLOW_NON_BLOCK_DEVICE) are treated
    as disks of 512-byte blocks.

Operations:
    - run_command(): Run a host tool, logging the command and its output
    - is_block_device(): Check the destination type
    - read_disk_geometry(): Logical block size and block count
    - list_usb_disks(): Removable disks suitable as destinations
    - human_size(): Convert bytes to human-readable format (KB/MB/GB)
"""

from __future__ import annotations

import json
import os
import re
import stat
import subprocess
from typing import Any

from glassusb.domain.models import DiskGeometry
from glassusb.logging import LoggerFactory

ROOT_MOUNTPOINTS = {"/", "/boot", "/boot/efi", "/boot/firmware"}
DEFAULT_LOGICAL_BLOCK_SIZE = 512

log = LoggerFactory.for_device()


def run_command(command, check=True, log_output=True, log_command=True):
    if log_command:
        log.debug(f"Running command: {' '.join(command)}")
    try:
        result = subprocess.run(command, check=check, text=True, capture_output=True)
    except subprocess.CalledProcessError as error:
        log.debug(f"Command failed: {' '.join(command)}")
        if error.stdout:
            log.debug(f"stdout: {error.stdout.strip()}")
        if error.stderr:
            log.debug(f"stderr: {error.stderr.strip()}")
        raise
    if result.stdout and (log_output or result.returncode != 0):
        log.bind(tags=["command-output"]).trace(f"stdout: {result.stdout.strip()}")
    if result.stderr and (log_output or result.returncode != 0):
        log.bind(tags=["command-output"]).trace(f"stderr: {result.stderr.strip()}")
    if log_command:
        log.debug(f"Command completed with return code {result.returncode}")
    return result


def command_output(error: Exception) -> str:
    """Combine the captured stdout and stderr of a failed command."""
    if not isinstance(error, subprocess.CalledProcessError):
        return str(error)
    parts = [error.stdout, error.stderr]
    return "\n".join(part.strip() for part in parts if part and part.strip())


def human_size(size_bytes):
    if size_bytes is None:
        return "0B"
    size = float(size_bytes)
    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if size < 1024.0:
            return f"{size:.1f}{unit}"
        size /= 1024.0
    return f"{size:.1f}PB"


def format_device_label(device):
    if isinstance(device, dict):
        name = device.get("name") or ""
        size_label = human_size(device.get("size"))
        parts = [
            (device.get("vendor") or "").strip(),
            (device.get("model") or "").strip(),
        ]
        vendor_model = " ".join(part for part in parts if part)
    else:
        name = str(device or "")
        size_label = ""
        vendor_model = ""
    if size_label:
        size_label = re.sub(r"\.0([A-Z])", r"\1", size_label)
        if vendor_model:
            return f"/dev/{name} {vendor_model} ({size_label})"
        return f"/dev/{name} {size_label}".strip()
    return name


def is_block_device(path: str) -> bool:
    try:
        return stat.S_ISBLK(os.stat(path).st_mode)
    except OSError:
        return False


def read_disk_geometry(path: str) -> DiskGeometry:
    """Return the logical block size and block count of a device or file.

    Raises:
        OSError: If the path cannot be inspected
        subprocess.CalledProcessError: If blockdev fails
    """
    if not is_block_device(path):
        size = os.stat(path).st_size
        return DiskGeometry(
            logical_block_size=DEFAULT_LOGICAL_BLOCK_SIZE,
            total_blocks=size // DEFAULT_LOGICAL_BLOCK_SIZE,
        )
    block_size = int(run_command(["blockdev", "--getss", path]).stdout.strip())
    size = int(run_command(["blockdev", "--getsize64", path]).stdout.strip())
    log.debug(f"Geometry of {path}: {size} bytes, {block_size}-byte logical blocks")
    return DiskGeometry(logical_block_size=block_size, total_blocks=size // block_size)


def get_block_devices() -> list[dict[str, Any]]:
    """Return block device data from lsblk, or an empty list if lsblk fails."""
    try:
        result = run_command(
            [
                "lsblk",
                "-J",
                "-b",
                "-o",
                "NAME,TYPE,SIZE,MODEL,VENDOR,TRAN,RM,MOUNTPOINT,FSTYPE,LABEL",
            ],
            log_output=False,
            log_command=False,
        )
        data = json.loads(result.stdout)
    except (OSError, subprocess.CalledProcessError, json.JSONDecodeError) as error:
        log.debug(f"lsblk failed: {error}")
        return []
    return data.get("blockdevices", []) or []


def get_children(device):
    return device.get("children", []) or []


def has_root_mountpoint(device):
    mountpoint = device.get("mountpoint")
    if mountpoint in ROOT_MOUNTPOINTS:
        return True
    for child in get_children(device):
        if has_root_mountpoint(child):
            return True
    return False


def is_root_device(device):
    if device.get("type") != "disk":
        return False
    return has_root_mountpoint(device)


def _is_removable(device) -> bool:
    return device.get("rm") in (1, True, "1") or device.get("tran") == "usb"


def list_usb_disks():
    devices = []
    for device in get_block_devices():
        if device.get("type") != "disk":
            continue
        if is_root_device(device):
            continue
        if _is_removable(device):
            devices.append(device)
    return devices
