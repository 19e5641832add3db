"""Domain model for A/B partition set updates.

Everything an update run derives (which set is active, the PARTUUIDs, the
image layout) is carried in these frozen objects and passed explicitly between
the steps, so each step can be exercised with synthetic values.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

SECTOR_SIZE = 512

# Layout used when the image's partition table cannot be read
DEFAULT_BOOT_START_SECTOR = 8192
DEFAULT_BOOT_SIZE_SECTORS = 524288  # 256 MiB
DEFAULT_ROOT_START_SECTOR = 532480


# ==============================================================================
# Partition Sets
# ==============================================================================


class SetLabel(str, Enum):
    """Name of a partition set."""

    A = "A"
    B = "B"

    def other(self) -> SetLabel:
        return SetLabel.B if self is SetLabel.A else SetLabel.A


@dataclass(frozen=True)
class PartitionSet:
    """One bootable OS instance: a boot partition and a root partition.

    ``boot_index`` is the partition number the firmware understands in
    ``boot_partition=`` and ``os_prefix=`` lines.
    """

    label: SetLabel
    boot_device: str  # e.g., "/dev/mmcblk0p1"
    root_device: str  # e.g., "/dev/mmcblk0p2"
    boot_index: int  # e.g., 1

    @classmethod
    def from_dict(cls, label: SetLabel, data: Mapping[str, Any]) -> PartitionSet:
        """Build a set from a settings entry.

        Raises:
            KeyError: If boot, root or boot_index is missing
            ValueError: If boot_index is not an integer
        """
        return cls(
            label=label,
            boot_device=str(data["boot"]),
            root_device=str(data["root"]),
            boot_index=int(data["boot_index"]),
        )


@dataclass(frozen=True)
class DeviceMap:
    """Static pairing of the two partition sets plus the shared home partition."""

    sets: Mapping[SetLabel, PartitionSet]
    home_device: str

    def __post_init__(self) -> None:
        if set(self.sets) != {SetLabel.A, SetLabel.B}:
            raise ValueError("Device map must define exactly the A and B sets")
        devices = [self.home_device]
        for partition_set in self.sets.values():
            devices.extend([partition_set.boot_device, partition_set.root_device])
        if len(set(devices)) != len(devices):
            raise ValueError(f"Device map reuses a device: {devices}")
        indexes = {partition_set.boot_index for partition_set in self.sets.values()}
        if len(indexes) != 2:
            raise ValueError("Partition sets must have distinct boot indexes")

    def __getitem__(self, label: SetLabel) -> PartitionSet:
        return self.sets[label]

    @classmethod
    def from_settings(
        cls, partition_sets: Mapping[str, Mapping[str, Any]], home_device: str
    ) -> DeviceMap:
        sets = {
            SetLabel(label): PartitionSet.from_dict(SetLabel(label), entry)
            for label, entry in partition_sets.items()
        }
        return cls(sets=sets, home_device=home_device)


@dataclass(frozen=True)
class ActiveState:
    """Which set is running right now and which one receives the update.

    Derived from the live mount table on every run, never stored.
    """

    active: PartitionSet
    inactive: PartitionSet
    home_device: str
    root_source: str = ""

    @property
    def reboot_hint(self) -> str:
        """Command that performs a trial boot into the updated set."""
        return f"sudo reboot '{self.inactive.boot_index} tryboot'"


@dataclass(frozen=True)
class PartitionIdentifiers:
    """PARTUUIDs of every device the generated configuration refers to."""

    inactive_boot: str
    inactive_root: str
    active_boot: str
    active_root: str
    home: str


# ==============================================================================
# Image Layout
# ==============================================================================


@dataclass(frozen=True)
class ImageLayout:
    """Where the boot and root partitions live inside the source image.

    All values are in 512 byte sectors. ``boot_size_sectors`` is the length
    actually copied; it is smaller than ``boot_size_sectors_original`` when
    the target boot partition could not hold the image's boot partition.
    """

    boot_start_sector: int = DEFAULT_BOOT_START_SECTOR
    boot_size_sectors: int = DEFAULT_BOOT_SIZE_SECTORS
    boot_size_sectors_original: int = DEFAULT_BOOT_SIZE_SECTORS
    root_start_sector: int = DEFAULT_ROOT_START_SECTOR
    detected: bool = False
    sector_size: int = field(default=SECTOR_SIZE, repr=False)

    @property
    def clamped(self) -> bool:
        return self.boot_size_sectors < self.boot_size_sectors_original

    @property
    def boot_offset_bytes(self) -> int:
        return self.boot_start_sector * self.sector_size

    @property
    def boot_size_bytes(self) -> int:
        return self.boot_size_sectors * self.sector_size

    @property
    def root_offset_bytes(self) -> int:
        return self.root_start_sector * self.sector_size


def sectors_to_mib(sectors: int, sector_size: int = SECTOR_SIZE) -> int:
    """Whole MiB covered by ``sectors``."""
    return sectors * sector_size // (1024 * 1024)
