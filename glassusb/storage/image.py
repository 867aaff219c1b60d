"""Read-only access to the file tree inside a Windows installation image.

Windows installation ISOs keep their real content in a UDF filesystem (the
ISO 9660 side only carries a README). This module opens such an image with
pycdlib and exposes its UDF tree as FileTreeNode objects, the input type of
glassusb.storage.content.

Recognition:
    An image is accepted if it
    - does not start with a partition table (a raw disk image is not an ISO),
    - parses as an ISO with pycdlib,
    - carries a UDF filesystem, and
    - has at least one entry in the UDF root directory.
    Anything else raises NotARecognizedImageError.
"""

from __future__ import annotations

import abc
import os
import stat
from contextlib import AbstractContextManager
from datetime import datetime
from typing import BinaryIO, Iterator, Optional

import pycdlib
from pycdlib.pycdlibexception import PyCdlibException

from glassusb.logging import LoggerFactory
from glassusb.storage.exceptions import NotARecognizedImageError

log = LoggerFactory.for_content()

SECTOR_SIZE = 512
MBR_SIGNATURE = b"\x55\xaa"
MBR_PARTITION_TABLE_OFFSET = 446
MBR_PARTITION_ENTRY_SIZE = 16
GPT_SIGNATURE = b"EFI PART"


class FileTreeNode(abc.ABC):
    """A read-only directory or regular file inside a source image."""

    name: str
    size: int
    mode: int
    mtime: Optional[datetime]

    @property
    @abc.abstractmethod
    def is_dir(self) -> bool:
        """Whether this node is a directory."""

    @abc.abstractmethod
    def children(self) -> Iterator["FileTreeNode"]:
        """Yield the entries of a directory, in image order."""

    @abc.abstractmethod
    def open(self) -> AbstractContextManager[BinaryIO]:
        """Open a regular file for streaming reads."""

    def __repr__(self) -> str:
        kind = "dir" if self.is_dir else "file"
        return f"<{type(self).__name__} {kind} {self.name!r} {self.size}B>"


def udf_perms_to_mode(perms: Optional[int], is_dir: bool) -> int:
    """Convert UDF permission bits to POSIX permission bits.

    UDF keeps five bits per class (execute, write, read, change attributes,
    delete) for other, group and owner, starting at bits 0, 5 and 10.
    """
    if perms is None:
        return 0o755 if is_dir else 0o644
    mode = 0
    for udf_shift, posix_shift in ((0, 0), (5, 3), (10, 6)):
        execute = (perms >> udf_shift) & 1
        write = (perms >> (udf_shift + 1)) & 1
        read = (perms >> (udf_shift + 2)) & 1
        mode |= ((read << 2) | (write << 1) | execute) << posix_shift
    return mode


def _udf_timestamp(entry) -> Optional[datetime]:
    timestamp = getattr(entry, "mod_time", None)
    if timestamp is None:
        return None
    try:
        return datetime(
            timestamp.year,
            timestamp.month,
            timestamp.day,
            timestamp.hour,
            timestamp.minute,
            timestamp.second,
        )
    except (AttributeError, TypeError, ValueError):
        return None


class UdfNode(FileTreeNode):
    """A FileTreeNode backed by a pycdlib UDF file entry."""

    def __init__(self, iso: pycdlib.PyCdlib, path: str, entry) -> None:
        self._iso = iso
        self._entry = entry
        self.path = path
        self.name = path.rstrip("/").rsplit("/", 1)[-1]
        self._is_dir = bool(entry.is_dir())
        self.size = 0 if self._is_dir else int(entry.get_data_length())
        self.mode = udf_perms_to_mode(getattr(entry, "perms", None), self._is_dir)
        self.mtime = _udf_timestamp(entry)

    @property
    def is_dir(self) -> bool:
        return self._is_dir

    def children(self) -> Iterator[FileTreeNode]:
        if not self._is_dir:
            return
        prefix = self.path.rstrip("/")
        for child in self._iso.list_children(udf_path=self.path):
            if child is None:
                continue
            identifier = child.file_identifier()
            if identifier in (b"", b".", b"..", b"/"):
                continue
            name = identifier.decode("utf-8", errors="replace")
            if not (child.is_dir() or child.is_file()):
                log.debug(f"Skipping special UDF entry {prefix}/{name}")
                continue
            yield UdfNode(self._iso, f"{prefix}/{name}", child)

    def open(self) -> AbstractContextManager[BinaryIO]:
        return self._iso.open_file_from_iso(udf_path=self.path)


def is_partitioned_disk_image(fp: BinaryIO) -> bool:
    """Return True if the file starts with an MBR or GPT partition table."""
    fp.seek(0)
    head = fp.read(SECTOR_SIZE * 2)
    fp.seek(0)
    if len(head) >= SECTOR_SIZE * 2 and head[SECTOR_SIZE : SECTOR_SIZE + 8] == GPT_SIGNATURE:
        return True
    if len(head) < SECTOR_SIZE or head[510:512] != MBR_SIGNATURE:
        return False
    for index in range(4):
        entry_offset = MBR_PARTITION_TABLE_OFFSET + index * MBR_PARTITION_ENTRY_SIZE
        partition_type = head[entry_offset + 4]
        if partition_type != 0:
            return True
    return False


class UdfImage:
    """An opened Windows installation image.

    Usage:
        with open_image("Win11.iso") as image:
            extract_tree(image.root, "/mnt/usb")
    """

    def __init__(self, path: str) -> None:
        self.path = str(path)
        self._fp: Optional[BinaryIO] = None
        self._iso: Optional[pycdlib.PyCdlib] = None
        self.root: Optional[UdfNode] = None

    def open(self) -> "UdfImage":
        try:
            self._fp = open(self.path, "rb")
        except OSError as error:
            raise NotARecognizedImageError(self.path, str(error)) from error
        try:
            self._recognise()
        except BaseException:
            self.close()
            raise
        return self

    def _recognise(self) -> None:
        if is_partitioned_disk_image(self._fp):
            raise NotARecognizedImageError(
                self.path, "file is a partitioned disk image, not an ISO"
            )
        iso = pycdlib.PyCdlib()
        try:
            iso.open_fp(self._fp)
        except PyCdlibException as error:
            raise NotARecognizedImageError(self.path, str(error)) from error
        self._iso = iso
        if not iso.has_udf():
            raise NotARecognizedImageError(self.path, "no UDF filesystem found")
        try:
            root = UdfNode(iso, "/", iso.get_record(udf_path="/"))
            has_entries = next(root.children(), None) is not None
        except PyCdlibException as error:
            raise NotARecognizedImageError(self.path, str(error)) from error
        if not has_entries:
            raise NotARecognizedImageError(self.path, "UDF root directory is empty")
        self.root = root

    @property
    def size_bytes(self) -> int:
        return os.stat(self.path).st_size

    def close(self) -> None:
        if self._iso is not None:
            try:
                self._iso.close()
            except PyCdlibException as error:
                log.debug(f"Closing {self.path} failed: {error}")
            self._iso = None
        if self._fp is not None:
            self._fp.close()
            self._fp = None

    def __enter__(self) -> "UdfImage":
        if self._fp is None:
            self.open()
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()


def open_image(path: str) -> UdfImage:
    """Open and recognise a Windows installation image.

    Raises:
        NotARecognizedImageError: If the file is not a UDF installation image
    """
    image = UdfImage(path).open()
    log.debug(f"Opened {path} ({image.size_bytes} bytes)")
    return image


def describe_node(node: FileTreeNode) -> str:
    """Return an `ls -l` style line for a node."""
    file_type = stat.S_IFDIR if node.is_dir else stat.S_IFREG
    when = node.mtime.isoformat(sep=" ") if node.mtime else "-"
    return f"{stat.filemode(file_type | node.mode)} {node.size:<12d} {node.name:<24} {when}"
