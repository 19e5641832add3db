"""Map the running root filesystem onto the A/B partition sets."""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Optional

from rpi_ab_updater.domain.models import ActiveState, DeviceMap, PartitionSet
from rpi_ab_updater.logging import LoggerFactory

from . import devices
from .exceptions import PartitionSetResolutionError

log = LoggerFactory.for_system()


def _matches(root_source: str, partition_set: PartitionSet) -> bool:
    if root_source == partition_set.root_device:
        return True
    source_name = PurePosixPath(root_source).name
    return source_name == PurePosixPath(partition_set.root_device).name


def resolve_active_state(
    device_map: DeviceMap, root_source: Optional[str] = None
) -> ActiveState:
    """Work out which partition set is running and which one is the target.

    Args:
        device_map: The two managed partition sets and the home partition
        root_source: Current root device; queried with findmnt when omitted

    Raises:
        PartitionSetResolutionError: If the root device belongs to neither set
        DeviceQueryError: If the root device cannot be queried
    """
    if root_source is None:
        root_source = devices.get_root_source()
    log.info(f"Current root: {root_source}")

    matches = [
        partition_set
        for partition_set in device_map.sets.values()
        if _matches(root_source, partition_set)
    ]
    if len(matches) != 1:
        raise PartitionSetResolutionError(
            root_source,
            [partition_set.root_device for partition_set in device_map.sets.values()],
        )

    active = matches[0]
    inactive = device_map[active.label.other()]
    log.info(f"Currently booted from {active.label.value} partition set")
    log.info(f"Updating {inactive.label.value} partition set")
    log.info(f"Inactive boot: {inactive.boot_device}")
    log.info(f"Inactive root: {inactive.root_device}")
    return ActiveState(
        active=active,
        inactive=inactive,
        home_device=device_map.home_device,
        root_source=root_source,
    )
