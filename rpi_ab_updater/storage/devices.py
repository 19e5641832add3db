"""Block device and mount table queries.

Thin wrappers around ``findmnt``, ``lsblk`` and ``blkid``. Every command is
run with an argument list and a non-zero exit is turned into a
``DeviceQueryError`` (or the caller's more specific error) carrying stderr.

Operations:
    - run_command(): run a command, log it, return the CompletedProcess
    - get_root_source(): device currently mounted on /
    - get_device_size_bytes(): capacity of a block device in bytes
    - get_partuuid(): PARTUUID tag of a block device
"""

from __future__ import annotations

import subprocess

from rpi_ab_updater.logging import LoggerFactory

from .exceptions import DeviceQueryError

log = LoggerFactory.for_system()


def run_command(command, check=True, log_output=True):
    """Run ``command`` and return the completed process.

    Raises:
        subprocess.CalledProcessError: If ``check`` is set and the command fails
        FileNotFoundError: If the executable is missing
    """
    log.debug(f"Running command: {' '.join(command)}")
    try:
        result = subprocess.run(command, check=check, text=True, capture_output=True)
    except subprocess.CalledProcessError as error:
        log.debug(f"Command failed: {' '.join(command)}")
        if error.stderr:
            log.debug(f"stderr: {error.stderr.strip()}")
        raise
    if result.stdout and log_output:
        log.debug(f"stdout: {result.stdout.strip()}")
    if result.stderr and (log_output or result.returncode != 0):
        log.debug(f"stderr: {result.stderr.strip()}")
    return result


def _query(command: list[str]) -> str:
    try:
        result = run_command(command)
    except (subprocess.CalledProcessError, FileNotFoundError) as error:
        stderr = getattr(error, "stderr", None) or str(error)
        raise DeviceQueryError(
            f"Command failed ({' '.join(command)}): {stderr.strip()}"
        ) from error
    return result.stdout.strip()


def get_root_source(mountpoint: str = "/") -> str:
    """Source device of the filesystem mounted on ``mountpoint``.

    Equivalent to ``findmnt -nfco SOURCE /``.
    """
    source = _query(["findmnt", "-nfco", "SOURCE", mountpoint])
    if not source:
        raise DeviceQueryError(f"No filesystem is mounted on {mountpoint}")
    return source


def get_device_size_bytes(device: str) -> int:
    """Capacity of ``device`` in bytes as reported by ``lsblk -b``."""
    output = _query(["lsblk", "-b", "-d", "-n", "-o", "SIZE", device])
    try:
        return int("".join(output.split()))
    except ValueError as error:
        raise DeviceQueryError(
            f"Unexpected lsblk size output for {device}: {output!r}"
        ) from error


def get_partuuid(device: str) -> str:
    """PARTUUID of ``device``, or an empty string when blkid reports none.

    ``blkid`` exits with status 2 when the tag is missing, which is not an
    error at this level.
    """
    command = ["blkid", "-s", "PARTUUID", "-o", "value", device]
    try:
        result = run_command(command, check=False)
    except FileNotFoundError as error:
        raise DeviceQueryError(f"blkid not available: {error}") from error
    if result.returncode not in (0, 2):
        stderr = (result.stderr or "").strip() or "blkid failed"
        raise DeviceQueryError(f"Command failed ({' '.join(command)}): {stderr}")
    return result.stdout.strip()
