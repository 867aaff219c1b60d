"""Apply a PartitionPlan to a device and write raw partition contents.

The table is created in a single parted invocation with explicit sector
boundaries taken from the plan, so parted performs no alignment of its own:

    parted -s -a none /dev/sdb unit s mklabel msdos \\
        mkpart primary ntfs 2048s 62521343s \\
        mkpart primary fat16 62521344s 62523391s \\
        set 1 boot on set 2 esp on

Before partitioning, old filesystem signatures are wiped (wipefs -a). After
partitioning the kernel is asked to re-read the table (sync, partprobe,
udevadm settle). Those steps are best-effort; only parted's exit status
decides success.
"""

from __future__ import annotations

import contextlib
import os
import shutil
import subprocess

from glassusb.domain.models import PartitionPlan, PartitionRole, PartitionSpec
from glassusb.logging import LoggerFactory
from glassusb.storage.devices import command_output, run_command
from glassusb.storage.exceptions import PartitionWriteError, PayloadWriteError

log = LoggerFactory.for_device()

# GPT partition names; parted takes the name as a single argument
GPT_NAMES = {
    PartitionRole.ESP_BOOTSTRAP: "EFI",
    PartitionRole.WINDOWS_DATA: "Windows",
}

# File system type hints; parted uses them to pick the MBR type byte
FS_TYPE_HINTS = {
    PartitionRole.ESP_BOOTSTRAP: "fat32",
    PartitionRole.WINDOWS_DATA: "ntfs",
}


def _mkpart_args(spec: PartitionSpec, use_gpt: bool) -> list[str]:
    kind = GPT_NAMES[spec.role] if use_gpt else "primary"
    return [
        "mkpart",
        kind,
        FS_TYPE_HINTS[spec.role],
        f"{spec.start_block}s",
        f"{spec.end_block}s",
    ]


def _flag_args(number: int, spec: PartitionSpec, use_gpt: bool) -> list[str]:
    args: list[str] = []
    if spec.role is PartitionRole.ESP_BOOTSTRAP:
        args += ["set", str(number), "esp", "on"]
    elif use_gpt:
        args += ["set", str(number), "msftdata", "on"]
    if spec.bootable and not use_gpt:
        args += ["set", str(number), "boot", "on"]
    return args


def parted_command(device: str, plan: PartitionPlan) -> list[str]:
    """Return the parted invocation creating plan on device."""
    command = ["parted", "-s", "-a", "none", device, "unit", "s", "mklabel"]
    command.append("gpt" if plan.use_gpt else "msdos")
    for spec in plan.partitions:
        command += _mkpart_args(spec, plan.use_gpt)
    for number, spec in enumerate(plan.partitions, start=1):
        command += _flag_args(number, spec, plan.use_gpt)
    return command


def _run_best_effort(command: list[str]) -> None:
    if not shutil.which(command[0]):
        log.debug(f"{command[0]} not found, skipping")
        return
    with contextlib.suppress(subprocess.CalledProcessError, OSError):
        run_command(command, log_command=False)


def settle_device(device: str) -> None:
    """Ask the kernel and udev to pick up a new partition table."""
    for command in (
        ["sync"],
        ["partprobe", device],
        ["udevadm", "settle", "--timeout=10"],
    ):
        _run_best_effort(command)


def write_partition_table(device: str, plan: PartitionPlan) -> None:
    """Replace the partition table of device with plan.

    Raises:
        PartitionWriteError: If parted fails; carries its output
    """
    log.info(
        f"Creating {'GPT' if plan.use_gpt else 'MBR'} partition table on {device} "
        f"with {len(plan.partitions)} partition(s)"
    )
    _run_best_effort(["wipefs", "-a", device])
    command = parted_command(device, plan)
    try:
        run_command(command)
    except (subprocess.CalledProcessError, OSError) as error:
        raise PartitionWriteError(device, command_output(error)) from error
    settle_device(device)
    for number, spec in enumerate(plan.partitions, start=1):
        log.debug(
            f"Partition {number}: {spec.role.value} blocks "
            f"{spec.start_block}-{spec.end_block}"
            f"{' (bootable)' if spec.bootable else ''}"
        )


def write_partition_payload(
    device: str, plan: PartitionPlan, number: int, payload: bytes
) -> None:
    """Write payload at the start of partition number and sync it.

    Raises:
        PayloadWriteError: If the payload does not fit or the write fails
    """
    try:
        spec = plan.partition(number)
    except IndexError:
        raise PayloadWriteError(device, number, "no such partition in plan") from None
    capacity = spec.block_count * plan.logical_block_size
    if len(payload) > capacity:
        raise PayloadWriteError(
            device,
            number,
            f"payload of {len(payload)} bytes exceeds partition size of "
            f"{capacity} bytes",
        )
    offset = spec.start_block * plan.logical_block_size
    log.debug(f"Writing {len(payload)} bytes to {device} at offset {offset}")
    try:
        with open(device, "r+b") as target:
            target.seek(offset)
            target.write(payload)
            target.flush()
            os.fsync(target.fileno())
    except OSError as error:
        raise PayloadWriteError(device, number, str(error)) from error
