"""Custom exceptions for the flash pipeline.

This module defines a hierarchy of exceptions for storage operations to provide
more specific error handling and better error messages.

Exception Hierarchy:
    StorageError (base)
        ├── ConfigurationError
        │   ├── UnsupportedFilesystemError
        │   ├── ToolNotFoundError
        │   └── PayloadNotFoundError
        ├── PreconditionError
        │   ├── NotABlockDeviceError
        │   ├── InsufficientSpaceError
        │   ├── NotARecognizedImageError
        │   └── GeometryError
        ├── PartitionWriteError
        ├── PayloadWriteError
        ├── FormatError
        ├── MountError
        │   ├── MountFailedError
        │   ├── UnmountFailedError
        │   └── LoopDeviceError
        ├── BootloaderError
        ├── ContentError
        │   ├── DirectoryCreateError
        │   ├── FileCreateError
        │   ├── FileOpenError
        │   ├── ReadError
        │   ├── WriteError
        │   ├── SyncError
        │   ├── ContentMismatchError
        │   └── SizeMismatchError
        │       └── UnexpectedExtraDataError
        └── PhaseError

Configuration and precondition errors are raised before anything is written to
the destination. Everything raised while a phase runs reaches the caller wrapped
in a PhaseError naming that phase.

Usage:
    from glassusb.storage.exceptions import ContentMismatchError

    if source_chunk != destination_chunk:
        raise ContentMismatchError(path)
"""

from __future__ import annotations

from typing import Optional


def _with_output(message: str, output: Optional[str]) -> str:
    output = (output or "").strip()
    if output:
        return f"{message}\noutput: {output}"
    return message


class StorageError(Exception):
    """Base exception for all storage operations."""


# ==============================================================================
# Configuration errors
# ==============================================================================


class ConfigurationError(StorageError):
    """Invalid or unsupported configuration, detected before any write."""


class UnsupportedFilesystemError(ConfigurationError):
    """The requested filesystem is not one glassusb knows how to create."""

    def __init__(self, filesystem: str, supported: tuple[str, ...] = ()):
        self.filesystem = filesystem
        self.supported = supported
        msg = f"Unsupported filesystem: {filesystem}"
        if supported:
            msg += f" (choose one of: {', '.join(supported)})"
        super().__init__(msg)


class ToolNotFoundError(ConfigurationError):
    """A host tool required by the requested configuration is missing."""

    def __init__(self, tool: str, purpose: str = ""):
        self.tool = tool
        self.purpose = purpose
        msg = f"Required tool not found: {tool}"
        if purpose:
            msg += f" ({purpose})"
        super().__init__(msg)


class PayloadNotFoundError(ConfigurationError):
    """The bootloader payload image could not be located."""

    def __init__(self, searched: list[str]):
        self.searched = searched
        if searched:
            message = "UEFI:NTFS bootloader image not found. Looked in: " + ", ".join(searched)
        else:
            message = (
                "UEFI:NTFS bootloader image not configured. Set GLASSUSB_UEFI_NTFS_IMAGE "
                "or the uefi_ntfs_image setting"
            )
        super().__init__(message)


# ==============================================================================
# Precondition errors
# ==============================================================================


class PreconditionError(StorageError):
    """Source or destination is unsuitable for flashing."""


class NotABlockDeviceError(PreconditionError):
    """The destination is not a block device."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Specified device is not a block device: {path}")


class InsufficientSpaceError(PreconditionError):
    """Destination device is too small for the source image."""

    def __init__(self, image_size: int, destination: str, destination_size: int):
        self.image_size = image_size
        self.destination = destination
        self.destination_size = destination_size
        super().__init__(
            f"Destination {destination} ({destination_size} bytes) "
            f"is too small for the image ({image_size} bytes)"
        )


class NotARecognizedImageError(PreconditionError):
    """The source file is not a Windows installation image in UDF format."""

    def __init__(self, path: str, reason: str = ""):
        self.path = path
        self.reason = reason
        msg = f"{path} is not recognised as a valid Windows ISO image in UDF format"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class GeometryError(PreconditionError):
    """The disk cannot hold the requested partition layout."""


# ==============================================================================
# Phase execution errors
# ==============================================================================


class PartitionWriteError(StorageError):
    """Writing the partition table failed."""

    def __init__(self, device: str, output: Optional[str] = None):
        self.device = device
        self.output = output
        super().__init__(
            _with_output(f"Failed to create partition table on {device}", output)
        )


class PayloadWriteError(StorageError):
    """Writing raw bytes into a partition failed."""

    def __init__(self, device: str, partition_number: int, reason: str):
        self.device = device
        self.partition_number = partition_number
        self.reason = reason
        super().__init__(
            f"Failed to write payload to partition {partition_number} "
            f"of {device}: {reason}"
        )


class FormatError(StorageError):
    """A filesystem formatting tool failed."""

    def __init__(self, partition: str, filesystem: str, output: Optional[str] = None):
        self.partition = partition
        self.filesystem = filesystem
        self.output = output
        super().__init__(
            _with_output(
                f"Failed to create {filesystem} filesystem on {partition}", output
            )
        )


class MountError(StorageError):
    """Base exception for mount-related errors."""


class MountFailedError(MountError):
    """Mounting a partition failed."""

    def __init__(self, partition: str, mountpoint: str, output: Optional[str] = None):
        self.partition = partition
        self.mountpoint = mountpoint
        self.output = output
        super().__init__(
            _with_output(f"Failed to mount {partition} at {mountpoint}", output)
        )


class UnmountFailedError(MountError):
    """Failed to unmount a mountpoint or device partition."""

    def __init__(self, target: str, output: Optional[str] = None):
        self.target = target
        self.output = output
        super().__init__(_with_output(f"Failed to unmount {target}", output))


class LoopDeviceError(MountError):
    """Attaching or detaching a loop device failed."""

    def __init__(self, message: str, output: Optional[str] = None):
        self.output = output
        super().__init__(_with_output(message, output))


class BootloaderError(StorageError):
    """Writing boot code with ms-sys failed."""

    def __init__(self, target: str, output: Optional[str] = None):
        self.target = target
        self.output = output
        super().__init__(
            _with_output(f"Failed to write MBR bootloader to {target}", output)
        )


# ==============================================================================
# Content errors (extraction and validation)
# ==============================================================================


class ContentError(StorageError):
    """Base exception for extraction and validation failures on one path."""

    def __init__(self, message: str, path: str):
        self.path = path
        super().__init__(message)


class DirectoryCreateError(ContentError):
    def __init__(self, path: str, reason: str = ""):
        super().__init__(f"Failed to create directory {path}: {reason}", path)


class FileCreateError(ContentError):
    def __init__(self, path: str, reason: str = ""):
        super().__init__(f"Failed to create file {path}: {reason}", path)


class FileOpenError(ContentError):
    def __init__(self, path: str, reason: str = ""):
        super().__init__(f"Failed to open file {path}: {reason}", path)


class ReadError(ContentError):
    def __init__(self, path: str, reason: str = "", *, from_image: bool = False):
        self.from_image = from_image
        where = "from image" if from_image else "from destination"
        super().__init__(f"Failed to read file {path} {where}: {reason}", path)


class WriteError(ContentError):
    def __init__(self, path: str, reason: str = ""):
        super().__init__(f"Failed to write file {path}: {reason}", path)


class SyncError(ContentError):
    def __init__(self, path: str, reason: str = ""):
        super().__init__(f"Failed to sync file {path}: {reason}", path)


class ContentMismatchError(ContentError):
    """Destination bytes differ from the image."""

    def __init__(self, path: str, offset: Optional[int] = None):
        self.offset = offset
        msg = f"Contents of file {path} do not match the image"
        if offset is not None:
            msg += f" (first difference in chunk at byte {offset})"
        super().__init__(msg, path)


class SizeMismatchError(ContentError):
    """Destination file is larger than the image file.

    A destination that ends early is reported as a ReadError instead.
    """

    def __init__(self, path: str, message: Optional[str] = None):
        super().__init__(message or f"File {path} on disk is larger than expected", path)


class UnexpectedExtraDataError(SizeMismatchError):
    """Destination file continues past the end of the image file."""

    def __init__(self, path: str):
        super().__init__(path, f"File {path} on disk has unexpected extra data")


class PhaseError(StorageError):
    """A numbered flash phase failed; wraps the underlying error."""

    def __init__(self, phase: str, number: int, total: int, cause: BaseException):
        self.phase = phase
        self.number = number
        self.total = total
        self.cause = cause
        super().__init__(f"Phase {number}/{total} ({phase}) failed: {cause}")
