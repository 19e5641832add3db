"""Custom exceptions for update operations.

This module defines a hierarchy of exceptions so the CLI can tell a failed
update apart from a programming error and report a readable cause.

Exception Hierarchy:
    UpdateError (base)
        ├── PreconditionError
        ├── PartitionSetResolutionError
        ├── IdentifierLookupError
        ├── DeviceQueryError
        ├── ImageStreamError
        ├── MountError
        │   └── UnmountError
        ├── BootConfigError
        └── RootFsConfigError

Layout detection and capacity shortfalls are not errors: the layout inspector
falls back to defaults or clamps the copy and logs a warning instead.

Usage:
    from rpi_ab_updater.storage.exceptions import IdentifierLookupError

    if not partuuid:
        raise IdentifierLookupError(device, "no PARTUUID reported")
"""

from __future__ import annotations


class UpdateError(Exception):
    """Base exception for all update operations."""


class PreconditionError(UpdateError):
    """Invocation or environment is not fit for an update."""


class PartitionSetResolutionError(UpdateError):
    """Current root device is not one of the managed partition sets."""

    def __init__(self, root_source: str, known_roots: list[str]):
        self.root_source = root_source
        self.known_roots = known_roots
        known = ", ".join(known_roots)
        super().__init__(
            f"Unable to determine current boot partition: root {root_source!r} "
            f"matches none of {known}"
        )


class IdentifierLookupError(UpdateError):
    """A device has no usable PARTUUID."""

    def __init__(self, device: str, reason: str):
        self.device = device
        self.reason = reason
        super().__init__(f"Cannot resolve PARTUUID for {device}: {reason}")


class DeviceQueryError(UpdateError):
    """Querying block device or mount information failed."""


class ImageStreamError(UpdateError):
    """Decompressing or writing the image failed."""

    def __init__(self, message: str, target: str | None = None):
        self.target = target
        super().__init__(message)


class MountError(UpdateError):
    """Mounting a partition failed."""

    def __init__(self, device: str, mountpoint: str, reason: str):
        self.device = device
        self.mountpoint = mountpoint
        self.reason = reason
        super().__init__(f"Failed to mount {device} on {mountpoint}: {reason}")


class UnmountError(MountError):
    """Unmounting a partition failed."""

    def __init__(self, device: str, mountpoint: str, reason: str):
        super().__init__(device, mountpoint, reason)
        self.args = (f"Failed to unmount {mountpoint} ({device}): {reason}",)


class BootConfigError(UpdateError):
    """Writing boot partition configuration failed."""


class RootFsConfigError(UpdateError):
    """Writing configuration into the new root filesystem failed."""
