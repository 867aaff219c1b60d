"""Phased construction of a bootable Windows installation drive.

Pipeline:
    Preflight (not numbered, nothing is written):
        - Open the image and check it is a UDF Windows image
        - Read the destination geometry
        - Require a block device (GLASSUSB_ALLOW_NON_BLOCK_DEVICE lifts this)
        - Require the destination to be at least as large as the image
          (GLASSUSB_DISABLE_SIZE_CHECK lifts this)
        - Plan the partitions and locate UEFI:NTFS and ms-sys if needed

    Phases (numbered "Phase i/N" in the log):
        1. UNMOUNT    Unmount anything mounted from the destination
        2. PARTITION  Write the partition table
        3. BOOTSTRAP  Write UEFI:NTFS to the bootstrap partition (not FAT32)
        4. FORMAT     Create the filesystem on the data partition
        5. EXTRACT    Mount the data partition and copy the image contents
        6. VALIDATE   Mount again and compare against the image (optional)
        7. BOOT_CODE  Write MBR boot code with ms-sys (MBR only)

The phase list is computed once from the FlashRequest before any phase runs.
A failing phase stops the run and is raised as PhaseError; mount points and
loop devices taken by the phase are released first.

Regular-file destinations are attached as loop devices by each phase that
needs partition nodes, and detached before the phase ends, so no two phases
ever hold a loop device or mount point at once.

Example:
    request = FlashRequest("Win11.iso", "/dev/sdb", Filesystem.NTFS)
    Flasher(request).run()
"""

from __future__ import annotations

import contextlib
import subprocess
from dataclasses import dataclass
from enum import Enum
from typing import Callable, ContextManager, Iterator, Optional

from glassusb.config import settings
from glassusb.domain.models import (
    DiskGeometry,
    Filesystem,
    FlashRequest,
    PartitionPlan,
)
from glassusb.logging import LoggerFactory, operation_context
from glassusb.storage import (
    bootloader,
    content,
    devices,
    format as formatting,
    geometry,
    image,
    mount,
    partition_table,
)
from glassusb.storage.exceptions import (
    InsufficientSpaceError,
    NotABlockDeviceError,
    PhaseError,
    PreconditionError,
    StorageError,
)

log = LoggerFactory.for_flash()


class Phase(Enum):
    UNMOUNT = "unmount"
    PARTITION = "partition"
    BOOTSTRAP = "bootstrap"
    FORMAT = "format"
    EXTRACT = "extract"
    VALIDATE = "validate"
    BOOT_CODE = "boot-code"

    @property
    def description(self) -> str:
        return PHASE_DESCRIPTIONS[self]


PHASE_DESCRIPTIONS = {
    Phase.UNMOUNT: "Unmounting partitions on the destination",
    Phase.PARTITION: "Creating partition table",
    Phase.BOOTSTRAP: "Writing UEFI:NTFS to the bootstrap partition",
    Phase.FORMAT: "Creating filesystem on the Windows partition",
    Phase.EXTRACT: "Extracting image contents",
    Phase.VALIDATE: "Validating written files",
    Phase.BOOT_CODE: "Writing MBR boot code",
}


@dataclass(frozen=True)
class PhasePlan:
    """Ordered phases of one run."""

    phases: tuple[Phase, ...]

    @property
    def total(self) -> int:
        return len(self.phases)

    def number(self, phase: Phase) -> int:
        return self.phases.index(phase) + 1

    def __iter__(self) -> Iterator[Phase]:
        return iter(self.phases)

    def __len__(self) -> int:
        return len(self.phases)

    def __contains__(self, phase: object) -> bool:
        return phase in self.phases


def build_phase_plan(request: FlashRequest) -> PhasePlan:
    """Return the phases a request runs through.

    Seven phases, minus one each for GPT, skipped validation and FAT32.
    """
    phases = []
    for phase in Phase:
        if phase is Phase.BOOTSTRAP and request.filesystem is Filesystem.FAT32:
            continue
        if phase is Phase.VALIDATE and request.skip_validation:
            continue
        if phase is Phase.BOOT_CODE and request.use_gpt:
            continue
        phases.append(phase)
    return PhasePlan(tuple(phases))


class HostBackend:
    """Host tools used by the Flasher.

    Every method is a thin call into a glassusb.storage module. Tests pass a
    substitute object with the same methods.
    """

    def open_image(self, path: str) -> ContextManager[image.UdfImage]:
        return image.open_image(path)

    def read_geometry(self, device: str) -> DiskGeometry:
        return devices.read_disk_geometry(device)

    def is_block_device(self, device: str) -> bool:
        return devices.is_block_device(device)

    def load_uefi_ntfs_image(self) -> bytes:
        return bootloader.load_uefi_ntfs_image()

    def find_ms_sys(self) -> str:
        return bootloader.find_ms_sys()

    def unmount_device(self, device: str) -> None:
        mount.unmount_device_partitions(device)

    def write_partition_table(self, device: str, plan: PartitionPlan) -> None:
        partition_table.write_partition_table(device, plan)

    def write_partition_payload(
        self, device: str, plan: PartitionPlan, number: int, payload: bytes
    ) -> None:
        partition_table.write_partition_payload(device, plan, number, payload)

    def loop_device(self, path: str) -> ContextManager[str]:
        return mount.loop_device(path)

    def wait_for_partition(self, partition: str) -> None:
        mount.wait_for_partition_node(partition)

    def format_partition(self, partition: str, filesystem: Filesystem) -> None:
        formatting.format_partition(partition, filesystem)

    def mounted_partition(self, partition: str) -> ContextManager[str]:
        return mount.mounted_partition(partition)

    def extract_tree(self, root: image.FileTreeNode, destination: str) -> None:
        content.extract_tree(root, destination)

    def validate_tree(self, root: image.FileTreeNode, destination: str) -> None:
        content.validate_tree(root, destination)

    def write_boot_code(self, target: str, ms_sys: str) -> None:
        bootloader.write_boot_code(target, ms_sys)


class Flasher:
    """Runs one FlashRequest against the host.

    Usage:
        Flasher(request).run()
    """

    def __init__(self, request: FlashRequest, backend: Optional[HostBackend] = None):
        request.validate()
        self.request = request
        self.backend = backend or HostBackend()
        self.phase_plan = build_phase_plan(request)
        self.source = None
        self.geometry: Optional[DiskGeometry] = None
        self.partition_plan: Optional[PartitionPlan] = None
        self.is_block_device = True
        self.payload: Optional[bytes] = None
        self.ms_sys: Optional[str] = None
        self._handlers: dict[Phase, Callable[[], None]] = {
            Phase.UNMOUNT: self._unmount,
            Phase.PARTITION: self._partition,
            Phase.BOOTSTRAP: self._bootstrap,
            Phase.FORMAT: self._format,
            Phase.EXTRACT: self._extract,
            Phase.VALIDATE: self._validate,
            Phase.BOOT_CODE: self._boot_code,
        }

    @property
    def destination(self) -> str:
        return self.request.destination_device

    def run(self) -> None:
        """Flash the drive.

        Raises:
            ConfigurationError: Before anything is written
            PreconditionError: Before anything is written
            PhaseError: If a numbered phase fails
        """
        request = self.request
        with operation_context(
            "flash",
            source=request.source_image,
            target=request.destination_device,
            filesystem=request.filesystem.value,
            scheme=request.partition_scheme.value,
        ) as op_log:
            with self.backend.open_image(request.source_image) as source:
                self.source = source
                self._preflight()
                total = self.phase_plan.total
                for number, phase in enumerate(self.phase_plan, start=1):
                    op_log.info(f"Phase {number}/{total}: {phase.description}")
                    try:
                        self._handlers[phase]()
                    except (StorageError, OSError) as error:
                        raise PhaseError(phase.value, number, total, error) from error

    # ------------------------------------------------------------------
    # Preflight
    # ------------------------------------------------------------------

    def _preflight(self) -> None:
        request = self.request
        self.is_block_device = self.backend.is_block_device(self.destination)
        if not self.is_block_device:
            if not settings.allow_non_block_device():
                raise NotABlockDeviceError(self.destination)
            log.warning(
                f"{self.destination} is not a block device, "
                "it will be attached as a loop device"
            )
        try:
            self.geometry = self.backend.read_geometry(self.destination)
        except (OSError, subprocess.CalledProcessError) as error:
            raise PreconditionError(
                f"Failed to get info about destination {self.destination}: {error}"
            ) from error

        image_size = self.source.size_bytes
        if image_size > self.geometry.size_bytes:
            if not settings.size_check_disabled():
                raise InsufficientSpaceError(
                    image_size, self.destination, self.geometry.size_bytes
                )
            log.warning("Destination is smaller than the image, continuing anyway")

        self.partition_plan = geometry.plan_for_request(
            self.geometry, request.partition_scheme, request.filesystem
        )
        if Phase.BOOTSTRAP in self.phase_plan:
            self.payload = self.backend.load_uefi_ntfs_image()
        if Phase.BOOT_CODE in self.phase_plan:
            self.ms_sys = self.backend.find_ms_sys()
        log.debug(
            f"Planned {len(self.partition_plan.partitions)} partition(s) on "
            f"{self.geometry.total_blocks} blocks of "
            f"{self.geometry.logical_block_size} bytes"
        )

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    @contextlib.contextmanager
    def _device_node(self) -> Iterator[str]:
        """Yield a block device for the destination for one phase."""
        if self.is_block_device:
            yield self.destination
            return
        with self.backend.loop_device(self.destination) as loop:
            yield loop

    def _data_partition(self, device: str) -> str:
        partition = mount.partition_path(device, self.partition_plan.data_number)
        self.backend.wait_for_partition(partition)
        return partition

    def _unmount(self) -> None:
        self.backend.unmount_device(self.destination)

    def _partition(self) -> None:
        self.backend.write_partition_table(self.destination, self.partition_plan)

    def _bootstrap(self) -> None:
        self.backend.write_partition_payload(
            self.destination,
            self.partition_plan,
            self.partition_plan.bootstrap_number,
            self.payload,
        )

    def _format(self) -> None:
        with self._device_node() as device:
            partition = self._data_partition(device)
            self.backend.format_partition(partition, self.request.filesystem)

    def _extract(self) -> None:
        with self._device_node() as device:
            partition = self._data_partition(device)
            with self.backend.mounted_partition(partition) as mountpoint:
                self.backend.extract_tree(self.source.root, mountpoint)

    def _validate(self) -> None:
        with self._device_node() as device:
            partition = self._data_partition(device)
            with self.backend.mounted_partition(partition) as mountpoint:
                self.backend.validate_tree(self.source.root, mountpoint)

    def _boot_code(self) -> None:
        with self._device_node() as device:
            partition = self._data_partition(device)
            self.backend.write_boot_code(partition, self.ms_sys)
            self.backend.write_boot_code(device, self.ms_sys)


def flash(request: FlashRequest, backend: Optional[HostBackend] = None) -> None:
    """Flash request.destination_device; see Flasher.run."""
    Flasher(request, backend).run()
