"""Interactive prompts that build a FlashRequest.

The wizard asks for the image, the destination disk, the filesystem, the
partition scheme and whether to validate, then shows a summary and requires
the user to type YES before anything is written.

Prompting goes through a single callable (input() by default) so the flow can
be driven from tests.
"""

from __future__ import annotations

import os
from typing import Callable, Iterable, Optional

from glassusb.config import settings
from glassusb.domain.models import Filesystem, FlashRequest, PartitionScheme
from glassusb.logging import LoggerFactory
from glassusb.storage.devices import format_device_label, list_usb_disks
from glassusb.storage.exceptions import ConfigurationError
from glassusb.storage.format import FILESYSTEM_PREFERENCE, default_filesystem

log = LoggerFactory.for_system()

Prompt = Callable[[str], str]
Output = Callable[[str], None]

INTRO = """\
This wizard will guide you through creating a Windows installation USB drive.

Make sure a spare USB flash drive is connected (more than 8 GB is recommended
for Windows 11) and that you have downloaded a Windows installation ISO.
Windows Vista, 7 and newer are supported.
"""


def _ask_image(prompt: Prompt, output: Output) -> str:
    while True:
        path = os.path.expanduser(prompt("Path to the Windows ISO: ").strip())
        if path and os.path.isfile(path):
            return path
        output(f"No such file: {path or '(empty)'}")


def _ask_device(prompt: Prompt, output: Output) -> str:
    disks = list_usb_disks()
    if disks:
        output("Removable drives:")
        for index, disk in enumerate(disks, start=1):
            output(f"  {index}) {format_device_label(disk)}")
    else:
        output("No removable drives found.")
    while True:
        answer = prompt("Drive number or device path: ").strip()
        if answer.isdigit() and 1 <= int(answer) <= len(disks):
            return f"/dev/{disks[int(answer) - 1]['name']}"
        if answer.startswith("/"):
            return answer
        output("Enter a number from the list or a path such as /dev/sdb")


def _ask_filesystem(
    prompt: Prompt, output: Output, available: Iterable[Filesystem]
) -> Filesystem:
    choices = [fs for fs in FILESYSTEM_PREFERENCE if fs in set(available)]
    if not choices:
        raise ConfigurationError("No supported filesystem can be created on this host")
    default = default_filesystem(choices)
    names = ", ".join(fs.value for fs in choices)
    while True:
        answer = prompt(f"Filesystem [{names}] ({default.value}): ").strip().lower()
        if not answer:
            return default
        for filesystem in choices:
            if answer == filesystem.value:
                return filesystem
        output(f"Choose one of: {names}")


def _ask_yes_no(prompt: Prompt, question: str, default: bool) -> bool:
    suffix = "[Y/n]" if default else "[y/N]"
    answer = prompt(f"{question} {suffix}: ").strip().lower()
    if not answer:
        return default
    return answer in ("y", "yes")


def run_wizard(
    available: Iterable[Filesystem],
    prompt: Prompt = input,
    output: Output = print,
) -> Optional[FlashRequest]:
    """Collect a FlashRequest interactively.

    Returns None if the user does not confirm with YES.
    """
    available = frozenset(available)
    output(INTRO)
    image = _ask_image(prompt, output)
    device = _ask_device(prompt, output)
    filesystem = _ask_filesystem(prompt, output, available)
    default_gpt = settings.get_setting("default_partition_scheme") == "gpt"
    use_gpt = _ask_yes_no(
        prompt, "Use GPT (UEFI only, Windows 8 or newer PCs)?", default_gpt
    )
    validate = _ask_yes_no(
        prompt,
        "Validate files after copying?",
        not settings.get_bool("skip_validation"),
    )

    request = FlashRequest(
        source_image=image,
        destination_device=device,
        filesystem=filesystem,
        partition_scheme=PartitionScheme.GPT if use_gpt else PartitionScheme.MBR,
        skip_validation=not validate,
    )
    output("")
    output(f"Image:       {request.source_image}")
    output(f"Device:      {request.destination_device}")
    output(f"Filesystem:  {request.filesystem.display_name}")
    output(f"Partitions:  {request.partition_scheme.value.upper()}")
    output(f"Validation:  {'no' if request.skip_validation else 'yes'}")
    output("")
    output(f"ALL DATA ON {request.destination_device} WILL BE ERASED.")
    if prompt("Type YES to continue: ").strip() != "YES":
        log.debug("Wizard not confirmed")
        return None
    return request
