"""Filesystem table of the freshly written root partition."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from rpi_ab_updater.domain.models import PartitionIdentifiers
from rpi_ab_updater.logging import LoggerFactory
from rpi_ab_updater.storage.exceptions import RootFsConfigError

from .cmdline import PARTUUID_PREFIX
from .files import write_str_to_file_atomic

log = LoggerFactory.for_boot()

FSTAB_PATH = Path("etc/fstab")


@dataclass(frozen=True)
class FstabEntry:
    partuuid: str
    mountpoint: str
    fstype: str
    options: str
    fsck_order: int

    def render(self) -> str:
        return (
            f"{PARTUUID_PREFIX}={self.partuuid}  {self.mountpoint}  {self.fstype}  "
            f"{self.options}  0  {self.fsck_order}"
        )


@dataclass(frozen=True)
class FstabOptions:
    root_fstype: str = "ext4"
    boot_fstype: str = "vfat"
    home_fstype: str = "ext4"
    root_mount_options: str = "defaults,noatime"
    boot_mount_options: str = "defaults"
    home_mount_options: str = "defaults,noatime"


def build_fstab(
    ids: PartitionIdentifiers, options: FstabOptions = FstabOptions()
) -> list[FstabEntry]:
    """Root, boot and home entries for the inactive set, keyed by PARTUUID."""
    return [
        FstabEntry(
            ids.inactive_root,
            "/",
            options.root_fstype,
            options.root_mount_options,
            1,
        ),
        FstabEntry(
            ids.inactive_boot,
            "/boot",
            options.boot_fstype,
            options.boot_mount_options,
            2,
        ),
        FstabEntry(
            ids.home, "/home", options.home_fstype, options.home_mount_options, 2
        ),
    ]


def render_fstab(entries: list[FstabEntry]) -> str:
    return "".join(f"{entry.render()}\n" for entry in entries)


def write_fstab(
    root_mount: Path,
    ids: PartitionIdentifiers,
    options: FstabOptions = FstabOptions(),
) -> Path:
    """Overwrite ``<root_mount>/etc/fstab``.

    Raises:
        RootFsConfigError: If /etc is missing or the file cannot be written
    """
    fstab_path = root_mount / FSTAB_PATH
    if not fstab_path.parent.is_dir():
        raise RootFsConfigError(f"{fstab_path.parent} does not exist in new root")
    log.info("Updating fstab in inactive root partition ...")
    content = render_fstab(build_fstab(ids, options))
    try:
        write_str_to_file_atomic(fstab_path, content)
    except OSError as error:
        raise RootFsConfigError(f"Failed to write {fstab_path}: {error}") from error
    log.debug(f"fstab:\n{content}")
    return fstab_path
