"""Boot code for Windows installation drives.

Two pieces are needed besides the copied files:

UEFI:NTFS image:
    A 1 MiB FAT image holding the UEFI:NTFS driver. It is written raw into the
    bootstrap partition and lets UEFI firmware boot from exFAT and NTFS. The
    image is not shipped with the package. Its path comes from
    GLASSUSB_UEFI_NTFS_IMAGE, or from the uefi_ntfs_image setting.

ms-sys:
    Writes Windows 7 compatible MBR and partition boot records so BIOS
    firmware can boot MBR drives. Looked up from GLASSUSB_MS_SYS, the
    ms_sys_path setting, then PATH.
"""

from __future__ import annotations

import os
import shutil
import subprocess
from pathlib import Path
from typing import Optional

from glassusb.config import settings
from glassusb.logging import LoggerFactory
from glassusb.storage.devices import command_output, run_command
from glassusb.storage.exceptions import (
    BootloaderError,
    PayloadNotFoundError,
    ToolNotFoundError,
)

log = LoggerFactory.for_device()

MS_SYS = "ms-sys"


def load_uefi_ntfs_image() -> bytes:
    """Return the UEFI:NTFS partition image.

    Raises:
        PayloadNotFoundError: If no image is configured, or the configured
            file is missing or unreadable
    """
    configured: Optional[Path] = settings.get_path_setting(
        "uefi_ntfs_image", settings.UEFI_NTFS_IMAGE_ENV
    )
    if configured is None:
        raise PayloadNotFoundError([])
    try:
        payload = configured.read_bytes()
    except OSError as error:
        raise PayloadNotFoundError([str(configured)]) from error
    log.debug(f"Loaded UEFI:NTFS image from {configured} ({len(payload)} bytes)")
    return payload


def find_ms_sys() -> str:
    """Return the path of the ms-sys executable.

    Raises:
        ToolNotFoundError: If ms-sys cannot be found
    """
    configured = settings.get_path_setting("ms_sys_path", settings.MS_SYS_PATH_ENV)
    if configured is not None:
        if configured.is_file() and os.access(configured, os.X_OK):
            return str(configured)
        raise ToolNotFoundError(str(configured), "configured ms-sys is not executable")
    found: Optional[str] = shutil.which(MS_SYS)
    if not found:
        raise ToolNotFoundError(MS_SYS, "needed to write MBR boot code")
    return found


def write_boot_code(target: str, ms_sys: str = MS_SYS) -> None:
    """Write boot code to a partition or whole device with `ms-sys -w`.

    Raises:
        BootloaderError: If ms-sys fails; carries its output
    """
    log.info(f"Writing MBR boot code to {target}")
    try:
        run_command([ms_sys, "-w", target])
    except (subprocess.CalledProcessError, OSError) as error:
        raise BootloaderError(target, command_output(error)) from error
