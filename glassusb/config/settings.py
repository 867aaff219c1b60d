"""Settings storage for application configuration."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


SETTINGS_PATH = Path(
    os.environ.get(
        "GLASSUSB_SETTINGS_PATH",
        Path.home() / ".config" / "glassusb" / "settings.json",
    )
)

# Escape hatches for test environments, read from the environment on every call
ALLOW_NON_BLOCK_DEVICE_ENV = "GLASSUSB_ALLOW_NON_BLOCK_DEVICE"
DISABLE_SIZE_CHECK_ENV = "GLASSUSB_DISABLE_SIZE_CHECK"
UEFI_NTFS_IMAGE_ENV = "GLASSUSB_UEFI_NTFS_IMAGE"
MS_SYS_PATH_ENV = "GLASSUSB_MS_SYS"

_TRUTHY = {"1", "true", "yes", "on"}

DEFAULT_MOUNT_PREFIX = "glassusb-"

DEFAULT_SETTINGS: dict[str, Any] = {
    "default_partition_scheme": "mbr",
    "skip_validation": False,
    "uefi_ntfs_image": None,
    "ms_sys_path": None,
    "mount_prefix": DEFAULT_MOUNT_PREFIX,
}


@dataclass
class SettingsStore:
    values: dict[str, Any] = field(default_factory=dict)


settings_store = SettingsStore()


def load_settings() -> None:
    settings_store.values = dict(DEFAULT_SETTINGS)
    if not SETTINGS_PATH.exists():
        return
    try:
        data = json.loads(SETTINGS_PATH.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return
    if isinstance(data, dict):
        settings_store.values.update(data)


def get_setting(key: str, default: Any | None = None) -> Any:
    return settings_store.values.get(key, default)


def get_bool(key: str, default: bool = False) -> bool:
    value = get_setting(key, default)
    if isinstance(value, str):
        return value.strip().lower() in _TRUTHY
    return bool(value)


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in _TRUTHY


def allow_non_block_device() -> bool:
    """Whether a regular file may stand in for the destination device."""
    return _env_flag(ALLOW_NON_BLOCK_DEVICE_ENV)


def size_check_disabled() -> bool:
    """Whether the image-larger-than-destination check is skipped."""
    return _env_flag(DISABLE_SIZE_CHECK_ENV)


def get_path_setting(key: str, env_name: str) -> Path | None:
    """Return a path from the environment, falling back to the settings file."""
    value = os.environ.get(env_name) or get_setting(key)
    if not value:
        return None
    return Path(value).expanduser()


load_settings()
