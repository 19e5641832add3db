"""PARTUUID lookup for every device the boot configuration references."""

from __future__ import annotations

from rpi_ab_updater.domain.models import ActiveState, PartitionIdentifiers
from rpi_ab_updater.logging import LoggerFactory

from . import devices
from .exceptions import IdentifierLookupError

log = LoggerFactory.for_system()


def lookup_partuuid(device: str) -> str:
    """PARTUUID of ``device``.

    Raises:
        IdentifierLookupError: If the device reports no PARTUUID
    """
    partuuid = devices.get_partuuid(device)
    if not partuuid:
        raise IdentifierLookupError(device, "no PARTUUID reported by blkid")
    return partuuid


def lookup_identifiers(state: ActiveState) -> PartitionIdentifiers:
    """Resolve all five PARTUUIDs before anything is written.

    Raises:
        IdentifierLookupError: If a device has no PARTUUID or both root
            partitions report the same one
    """
    identifiers = PartitionIdentifiers(
        inactive_boot=lookup_partuuid(state.inactive.boot_device),
        inactive_root=lookup_partuuid(state.inactive.root_device),
        active_boot=lookup_partuuid(state.active.boot_device),
        active_root=lookup_partuuid(state.active.root_device),
        home=lookup_partuuid(state.home_device),
    )
    log.info(f"Inactive boot PARTUUID: {identifiers.inactive_boot}")
    log.info(f"Inactive root PARTUUID: {identifiers.inactive_root}")
    log.info(f"Active boot PARTUUID: {identifiers.active_boot}")
    log.info(f"Active root PARTUUID: {identifiers.active_root}")
    log.info(f"Home PARTUUID: {identifiers.home}")

    if identifiers.inactive_root == identifiers.active_root:
        raise IdentifierLookupError(
            state.inactive.root_device,
            f"PARTUUID {identifiers.inactive_root} is shared with "
            f"{state.active.root_device}",
        )
    return identifiers
