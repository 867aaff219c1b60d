"""Command line entry point.

Usage:
    glassusb flash [--gpt] [--fs {exfat,ntfs,fat32}] [--skip-validation] IMAGE DEVICE
    glassusb wizard
    glassusb --version

Exit status is 0 on success, 1 on any failure and 130 when interrupted.
"""

from __future__ import annotations

import argparse
import sys
from typing import Optional

from glassusb.__version__ import __version__
from glassusb.config import settings
from glassusb.domain.models import FlashRequest, PartitionScheme
from glassusb.logging import LoggerFactory, setup_logging
from glassusb.storage.exceptions import ConfigurationError, StorageError
from glassusb.storage.flash import Flasher, HostBackend
from glassusb.storage.format import (
    FILESYSTEM_PREFERENCE,
    probe_available_filesystems,
    resolve_filesystem,
)
from glassusb.wizard import run_wizard

log = LoggerFactory.for_system()

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130


def _filesystem_help(available) -> str:
    names = [fs.value for fs in FILESYSTEM_PREFERENCE if fs in available]
    text = (
        "Filesystem holding the Windows files. exFAT and NTFS get a UEFI:NTFS "
        "bootstrap partition; FAT32 boots natively but cannot hold files over "
        "4 GB. "
    )
    if names:
        return text + f"Available: {', '.join(names)} (default: {names[0]})"
    return text + "No supported mkfs tool was found on this system"


def build_parser(available=frozenset()) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="glassusb",
        description="Create bootable Windows installation USB drives",
    )
    parser.add_argument(
        "-v", "--version", action="version", version=f"glassusb {__version__}"
    )
    parser.add_argument(
        "-d", "--debug", action="store_true", help="Enable verbose debug output"
    )
    parser.add_argument(
        "--trace", action="store_true", help="Log every command and its output"
    )
    parser.add_argument("--log-dir", help="Directory for log files")

    commands = parser.add_subparsers(dest="command", metavar="command")
    commands.required = True

    flash_parser = commands.add_parser(
        "flash", help="Flash a Windows ISO to a specific USB device"
    )
    flash_parser.add_argument(
        "--gpt",
        action="store_true",
        default=None,
        help="Use GPT partitioning instead of MBR (UEFI only, Windows 8 or newer PCs)",
    )
    flash_parser.add_argument(
        "--fs", dest="filesystem", help=_filesystem_help(available)
    )
    flash_parser.add_argument(
        "--skip-validation",
        action="store_true",
        default=None,
        help="Do not compare the written files against the image",
    )
    flash_parser.add_argument("image", help="Windows installation ISO")
    flash_parser.add_argument("device", help="Destination device, e.g. /dev/sdb")

    commands.add_parser("wizard", help="Answer a few questions, then flash")
    return parser


def request_from_args(args: argparse.Namespace, available) -> FlashRequest:
    """Build a FlashRequest from parsed flash arguments.

    Raises:
        ConfigurationError: If the filesystem is unknown or unavailable
    """
    filesystem = resolve_filesystem(args.filesystem, available)
    if args.gpt is None:
        try:
            scheme = PartitionScheme(
                settings.get_setting("default_partition_scheme", "mbr")
            )
        except ValueError:
            raise ConfigurationError(
                "Invalid default_partition_scheme setting: "
                f"{settings.get_setting('default_partition_scheme')!r}"
            ) from None
    else:
        scheme = PartitionScheme.GPT
    skip_validation = args.skip_validation
    if skip_validation is None:
        skip_validation = settings.get_bool("skip_validation")
    request = FlashRequest(
        source_image=args.image,
        destination_device=args.device,
        filesystem=filesystem,
        partition_scheme=scheme,
        skip_validation=skip_validation,
    )
    request.validate()
    return request


def run_flash(request: FlashRequest, backend: Optional[HostBackend] = None) -> int:
    try:
        Flasher(request, backend).run()
    except StorageError as error:
        log.error(str(error))
        return EXIT_FAILURE
    log.success(f"{request.destination_device} is ready to install Windows from")
    return EXIT_OK


def main(argv=None) -> int:
    available = probe_available_filesystems()
    parser = build_parser(available)
    args = parser.parse_args(argv)
    setup_logging(debug=args.debug, trace=args.trace, log_dir=args.log_dir)
    names = [fs.value for fs in FILESYSTEM_PREFERENCE if fs in available]
    log.debug(f"Available filesystems: {', '.join(names) or 'none'}")

    try:
        if args.command == "wizard":
            request = run_wizard(available)
            if request is None:
                log.info("Cancelled, nothing was written")
                return EXIT_FAILURE
        else:
            request = request_from_args(args, available)
        return run_flash(request)
    except ConfigurationError as error:
        log.error(str(error))
        return EXIT_FAILURE
    except KeyboardInterrupt:
        log.warning("Interrupted, the destination may be partially written")
        return EXIT_INTERRUPTED


if __name__ == "__main__":
    sys.exit(main())
