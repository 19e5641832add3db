"""Settings storage for updater configuration."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from rpi_ab_updater.domain.models import (
    DEFAULT_BOOT_SIZE_SECTORS,
    DEFAULT_BOOT_START_SECTOR,
    DEFAULT_ROOT_START_SECTOR,
    DeviceMap,
)


SETTINGS_PATH = Path(
    os.environ.get(
        "RPI_AB_UPDATER_SETTINGS_PATH",
        "/etc/rpi-ab-updater/settings.json",
    )
)

# Default values - use these constants instead of hardcoding values elsewhere
DEFAULT_KERNEL_IMAGE = "wlanpi-kernel8.img"
DEFAULT_CMDLINE = (
    "console=ttyAMA3,115200 console=tty1 root=PARTUUID=PLACEHOLDER "
    "rootfstype=ext4 fsck.repair=yes rootwait"
)
DEFAULT_HEADER_SECTORS = 34

DEFAULT_SETTINGS: dict[str, Any] = {
    "partition_sets": {
        "A": {"boot": "/dev/mmcblk0p1", "root": "/dev/mmcblk0p2", "boot_index": 1},
        "B": {"boot": "/dev/mmcblk0p5", "root": "/dev/mmcblk0p6", "boot_index": 5},
    },
    "home_device": "/dev/mmcblk0p7",
    "kernel_image": DEFAULT_KERNEL_IMAGE,
    "cmdline_filename": "cmdline.txt",
    "alt_cmdline_filename": "cmdline-b.txt",
    "tryboot_filename": "tryboot.txt",
    "autoboot_filename": "autoboot.txt",
    "active_autoboot_path": "/boot/autoboot.txt",
    "default_cmdline": DEFAULT_CMDLINE,
    "root_fstype": "ext4",
    "boot_fstype": "vfat",
    "home_fstype": "ext4",
    "root_mount_options": "defaults,noatime",
    "boot_mount_options": "defaults",
    "home_mount_options": "defaults,noatime",
    "layout_header_sectors": DEFAULT_HEADER_SECTORS,
    "default_boot_start": DEFAULT_BOOT_START_SECTOR,
    "default_boot_size": DEFAULT_BOOT_SIZE_SECTORS,
    "default_root_start": DEFAULT_ROOT_START_SECTOR,
    "dd_block_size": "4M",
    "allow_raw_images": False,
    "required_commands": ["dd", "blkid", "lsblk", "findmnt", "mount", "umount"],
}


@dataclass
class SettingsStore:
    values: dict[str, Any] = field(default_factory=dict)


settings_store = SettingsStore()


def load_settings(path: Path | None = None) -> None:
    settings_store.values = dict(DEFAULT_SETTINGS)
    path = path or SETTINGS_PATH
    if not path.exists():
        return
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return
    if isinstance(data, dict):
        settings_store.values.update(data)


def get_setting(key: str, default: Any | None = None) -> Any:
    return settings_store.values.get(key, default)


def get_bool(key: str, default: bool = False) -> bool:
    return bool(get_setting(key, default))


def get_int(key: str, default: int = 0) -> int:
    value = get_setting(key, default)
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def get_device_map() -> DeviceMap:
    """Device map built from the ``partition_sets`` and ``home_device`` keys."""
    return DeviceMap.from_settings(
        get_setting("partition_sets", DEFAULT_SETTINGS["partition_sets"]),
        get_setting("home_device", DEFAULT_SETTINGS["home_device"]),
    )


load_settings()
