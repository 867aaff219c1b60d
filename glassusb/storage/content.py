"""Extraction and validation of an image's file tree.

Both walks are depth-first and single-threaded; the only concurrency is the
ProgressReporter thread that samples the byte counter once per second.

Extraction:
    - Directories are created with the image's permission bits (owner rwx is
      always added so their contents can be written)
    - Files are streamed through one 4 MiB buffer and fsync'd before close

Validation:
    - Directories are only recursed into; files present on the destination but
      absent from the image are not reported
    - Files are compared in lock-step through two 4 MiB buffers, then the
      destination must be at EOF

Files named install.wim are neither extracted nor validated, at any depth.
They are left absent from the destination.

The first error aborts the walk and is raised as a ContentError subclass.
"""

from __future__ import annotations

import os
from contextlib import ExitStack
from typing import BinaryIO, Optional

from glassusb.logging import LoggerFactory
from glassusb.storage.exceptions import (
    ContentMismatchError,
    DirectoryCreateError,
    FileCreateError,
    FileOpenError,
    ReadError,
    SyncError,
    UnexpectedExtraDataError,
    WriteError,
)
from glassusb.storage.image import FileTreeNode, describe_node
from glassusb.storage.progress import ProgressReporter, ProgressTracker

BUFFER_SIZE = 4 * 1024 * 1024
SKIPPED_FILE_NAMES = frozenset({"install.wim"})

log = LoggerFactory.for_content()


def is_skipped(node: FileTreeNode) -> bool:
    return node.name in SKIPPED_FILE_NAMES


def total_size(root: FileTreeNode) -> int:
    """Return the sum of all file sizes below root."""
    size = 0
    for child in root.children():
        if child.is_dir:
            size += total_size(child)
        else:
            size += child.size
    return size


def _read_into(stream: BinaryIO, buffer: memoryview) -> int:
    """Fill buffer from stream, returning fewer bytes only at EOF."""
    filled = 0
    while filled < len(buffer):
        count = stream.readinto(buffer[filled:])
        if not count:
            break
        filled += count
    return filled


def _open_source(stack: ExitStack, node: FileTreeNode, path: str) -> BinaryIO:
    try:
        return stack.enter_context(node.open())
    except Exception as error:
        raise FileOpenError(path, str(error)) from error


# ==============================================================================
# Extraction
# ==============================================================================


def _extract_file(
    node: FileTreeNode, path: str, buffer: memoryview, progress: ProgressTracker
) -> None:
    with ExitStack() as stack:
        try:
            destination = stack.enter_context(open(path, "wb"))
        except OSError as error:
            raise FileCreateError(path, str(error)) from error
        source = _open_source(stack, node, path)
        while True:
            try:
                count = _read_into(source, buffer)
            except Exception as error:
                raise ReadError(path, str(error), from_image=True) from error
            if count == 0:
                break
            try:
                destination.write(buffer[:count])
            except OSError as error:
                raise WriteError(path, str(error)) from error
            progress.add(count)
        try:
            destination.flush()
            os.fsync(destination.fileno())
        except OSError as error:
            raise SyncError(path, str(error)) from error


def _extract_node(
    node: FileTreeNode, location: str, buffer: memoryview, progress: ProgressTracker
) -> None:
    path = os.path.join(location, node.name)
    if is_skipped(node):
        log.debug(f"Skipping {path}")
        return
    if node.is_dir:
        try:
            os.makedirs(path, mode=(node.mode & 0o7777) | 0o700, exist_ok=True)
        except OSError as error:
            raise DirectoryCreateError(path, str(error)) from error
        for child in node.children():
            _extract_node(child, path, buffer, progress)
    else:
        log.trace(f"Extracting {describe_node(node)} to {path}")
        _extract_file(node, path, buffer, progress)


def extract_tree(
    root: FileTreeNode,
    destination: str,
    progress: Optional[ProgressTracker] = None,
    reporter: Optional[ProgressReporter] = None,
) -> None:
    """Copy every entry below root into destination.

    Raises:
        ContentError: On the first directory, file or I/O failure
    """
    progress = progress or ProgressTracker()
    reporter = reporter or ProgressReporter(progress, "extracted", total_size(root))
    buffer = memoryview(bytearray(BUFFER_SIZE))
    log.info(f"Extracting image contents to {destination}")
    with reporter:
        for child in root.children():
            _extract_node(child, str(destination), buffer, progress)


# ==============================================================================
# Validation
# ==============================================================================


def _validate_file(
    node: FileTreeNode,
    path: str,
    source_buffer: memoryview,
    destination_buffer: memoryview,
    progress: ProgressTracker,
) -> None:
    with ExitStack() as stack:
        try:
            destination = stack.enter_context(open(path, "rb"))
        except OSError as error:
            raise FileOpenError(path, str(error)) from error
        source = _open_source(stack, node, path)
        offset = 0
        while True:
            try:
                count = _read_into(source, source_buffer)
            except Exception as error:
                raise ReadError(path, str(error), from_image=True) from error
            if count == 0:
                break
            try:
                received = _read_into(destination, destination_buffer[:count])
            except OSError as error:
                raise ReadError(path, str(error)) from error
            if received < count:
                raise ReadError(path, "destination ended early")
            if source_buffer[:count] != destination_buffer[:count]:
                raise ContentMismatchError(path, offset)
            offset += count
            progress.add(count)
        try:
            trailing = destination.read(1)
        except OSError as error:
            raise ReadError(path, str(error)) from error
        if trailing:
            raise UnexpectedExtraDataError(path)


def _validate_node(
    node: FileTreeNode,
    location: str,
    source_buffer: memoryview,
    destination_buffer: memoryview,
    progress: ProgressTracker,
) -> None:
    if is_skipped(node):
        return
    path = os.path.join(location, node.name)
    if node.is_dir:
        for child in node.children():
            _validate_node(child, path, source_buffer, destination_buffer, progress)
    else:
        log.trace(f"Validating {path} ({node.size} bytes)")
        _validate_file(node, path, source_buffer, destination_buffer, progress)


def validate_tree(
    root: FileTreeNode,
    destination: str,
    progress: Optional[ProgressTracker] = None,
    reporter: Optional[ProgressReporter] = None,
) -> None:
    """Byte-compare every file below root against its copy in destination.

    Raises:
        ContentMismatchError: If a file's bytes differ
        ReadError: If a destination file is shorter than the image file
        UnexpectedExtraDataError: If a destination file is longer
        ContentError: On any other open or read failure
    """
    progress = progress or ProgressTracker()
    reporter = reporter or ProgressReporter(progress, "validated", total_size(root))
    source_buffer = memoryview(bytearray(BUFFER_SIZE))
    destination_buffer = memoryview(bytearray(BUFFER_SIZE))
    log.info(f"Validating files in {destination} against the image")
    with reporter:
        for child in root.children():
            _validate_node(
                child, str(destination), source_buffer, destination_buffer, progress
            )
