"""Mount handling and the temporary workspace of an update run.

The workspace is a temporary directory holding two mount points, ``mnt_boot``
and ``mnt_root``. Both the mounts and the directory are released on every
exit path, including failures, so an aborted update never leaves the new
partitions mounted.

Functions:
    - mount_partition(): mount a block device on a directory
    - unmount_partition(): unmount a directory
    - mounted(): context manager pairing the two
    - update_workspace(): context manager owning the temporary directory
"""

from __future__ import annotations

import os
import shutil
import subprocess
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional

from rpi_ab_updater.logging import LoggerFactory

from .exceptions import MountError, UnmountError

log = LoggerFactory.for_system()


@dataclass(frozen=True)
class Workspace:
    path: Path

    @property
    def boot_mount(self) -> Path:
        return self.path / "mnt_boot"

    @property
    def root_mount(self) -> Path:
        return self.path / "mnt_root"

    @property
    def header_image(self) -> Path:
        return self.path / "mbr.img"


def _validate_device(device: str) -> None:
    if not isinstance(device, str) or not device.startswith("/dev/"):
        raise ValueError(f"Invalid device path: {device}")
    if any(char in device for char in [";", "&", "|", "$", "`", "\n", "\r", " "]):
        raise ValueError(f"Device path contains invalid characters: {device}")


def mount_partition(device: str, mountpoint: Path) -> None:
    """Mount ``device`` on ``mountpoint``.

    Raises:
        ValueError: If the device path is invalid
        MountError: If mount fails
    """
    _validate_device(device)
    log.debug(f"Mounting {device} on {mountpoint}")
    try:
        subprocess.run(
            ["mount", device, str(mountpoint)],
            check=True,
            capture_output=True,
            text=True,
        )
    except subprocess.CalledProcessError as e:
        raise MountError(device, str(mountpoint), e.stderr.strip()) from e


def unmount_partition(mountpoint: Path, device: str = "") -> None:
    """Unmount ``mountpoint`` if something is mounted there.

    Raises:
        UnmountError: If umount fails
    """
    if not os.path.ismount(mountpoint):
        return
    log.debug(f"Unmounting {mountpoint}")
    try:
        subprocess.run(
            ["umount", str(mountpoint)], check=True, capture_output=True, text=True
        )
    except subprocess.CalledProcessError as e:
        raise UnmountError(device, str(mountpoint), e.stderr.strip()) from e


@contextmanager
def mounted(device: str, mountpoint: Path) -> Iterator[Path]:
    """Mount ``device`` for the duration of the block.

    An unmount failure after a successful block is raised. If the block
    itself failed, the unmount failure is logged and the original error
    propagates.
    """
    mount_partition(device, mountpoint)
    failed = False
    try:
        yield mountpoint
    except BaseException:
        failed = True
        raise
    finally:
        try:
            unmount_partition(mountpoint, device)
        except UnmountError as error:
            if not failed:
                raise
            log.error(f"Cleanup: {error}")


@contextmanager
def update_workspace(base_dir: Optional[Path] = None) -> Iterator[Workspace]:
    """Temporary directory with ``mnt_boot`` and ``mnt_root`` mount points.

    Anything still mounted inside is unmounted before the directory is
    removed. The directory is left in place only if an unmount fails, since
    removing it would then delete files on the mounted partition.
    """
    workspace = Workspace(Path(tempfile.mkdtemp(prefix="rpi-ab-update-", dir=base_dir)))
    workspace.boot_mount.mkdir()
    workspace.root_mount.mkdir()
    log.debug(f"Created workspace {workspace.path}")
    failed = False
    try:
        yield workspace
    except BaseException:
        failed = True
        raise
    finally:
        log.info("Cleaning up ...")
        still_mounted = []
        for mountpoint in (workspace.boot_mount, workspace.root_mount):
            try:
                unmount_partition(mountpoint)
            except UnmountError as error:
                still_mounted.append(mountpoint)
                log.error(f"Cleanup: {error}")
        if still_mounted:
            if not failed:
                raise UnmountError(
                    "", ", ".join(str(path) for path in still_mounted), "still mounted"
                )
        else:
            shutil.rmtree(workspace.path, ignore_errors=True)
