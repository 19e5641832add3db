"""
Pytest configuration and shared fixtures for rpi-ab-updater tests.

This module provides synthetic disk headers, partition set fixtures and a
loguru capture sink used across the test modules.
"""

import struct
from pathlib import Path
from typing import List, Tuple

import pytest

from rpi_ab_updater.config.settings import DEFAULT_SETTINGS
from rpi_ab_updater.domain.models import (
    ActiveState,
    DeviceMap,
    PartitionIdentifiers,
    SetLabel,
)
from rpi_ab_updater.image.sources import ImageSource
from rpi_ab_updater.logging import logger

SECTOR = 512
HEADER_BYTES = 34 * SECTOR


# ==============================================================================
# Synthetic Disk Headers
# ==============================================================================


def build_mbr(entries: List[Tuple[int, int, int]]) -> bytes:
    """
    Build the leading 34 sectors of a dos-labelled disk.

    Args:
        entries: Up to four ``(type, first_lba, sector_count)`` tuples.
    """
    data = bytearray(HEADER_BYTES)
    for index, (part_type, first_lba, count) in enumerate(entries):
        offset = 446 + index * 16
        data[offset + 4] = part_type
        struct.pack_into("<II", data, offset + 8, first_lba, count)
    data[510:512] = b"\x55\xaa"
    return bytes(data)


def build_gpt(entries: List[Tuple[int, int]]) -> bytes:
    """
    Build the leading 34 sectors of a GPT disk.

    Args:
        entries: ``(first_lba, last_lba)`` tuples, one per partition.
    """
    data = bytearray(build_mbr([(0xEE, 1, 0xFFFFFFFF)]))
    header = SECTOR
    data[header : header + 8] = b"EFI PART"
    struct.pack_into("<Q", data, header + 72, 2)
    struct.pack_into("<II", data, header + 80, 128, 128)
    for index, (first_lba, last_lba) in enumerate(entries):
        offset = 2 * SECTOR + index * 128
        data[offset : offset + 16] = b"\xaf" * 16
        struct.pack_into("<QQ", data, offset + 32, first_lba, last_lba)
    return bytes(data)


@pytest.fixture
def wlanpi_header() -> bytes:
    """Header of a typical WLAN Pi image: 256 MiB boot, root after it."""
    return build_mbr([(0x0C, 8192, 524288), (0x83, 532480, 7000000)])


class FakeSource(ImageSource):
    """Image source serving a fixed byte string."""

    def __init__(self, data: bytes, path: Path = Path("/images/wlanpi.img.gz")):
        super().__init__(path)
        self.data = data
        self.requested: List[int] = []

    def read_head(self, size: int) -> bytes:
        self.requested.append(size)
        return self.data[:size]


@pytest.fixture
def fake_source():
    """Factory for FakeSource instances."""
    return FakeSource


# ==============================================================================
# Partition Set Fixtures
# ==============================================================================


@pytest.fixture
def device_map() -> DeviceMap:
    """The standard WLAN Pi A/B layout."""
    return DeviceMap.from_settings(
        DEFAULT_SETTINGS["partition_sets"], DEFAULT_SETTINGS["home_device"]
    )


@pytest.fixture
def state_a_active(device_map) -> ActiveState:
    """Running from set A, updating set B."""
    return ActiveState(
        active=device_map[SetLabel.A],
        inactive=device_map[SetLabel.B],
        home_device=device_map.home_device,
        root_source="/dev/mmcblk0p2",
    )


@pytest.fixture
def state_b_active(device_map) -> ActiveState:
    """Running from set B, updating set A."""
    return ActiveState(
        active=device_map[SetLabel.B],
        inactive=device_map[SetLabel.A],
        home_device=device_map.home_device,
        root_source="/dev/mmcblk0p6",
    )


@pytest.fixture
def identifiers() -> PartitionIdentifiers:
    """PARTUUIDs for an A-active update (inactive set is B)."""
    return PartitionIdentifiers(
        inactive_boot="6c586e13-05",
        inactive_root="6c586e13-06",
        active_boot="6c586e13-01",
        active_root="6c586e13-02",
        home="6c586e13-07",
    )


PARTUUIDS = {
    "/dev/mmcblk0p1": "6c586e13-01",
    "/dev/mmcblk0p2": "6c586e13-02",
    "/dev/mmcblk0p5": "6c586e13-05",
    "/dev/mmcblk0p6": "6c586e13-06",
    "/dev/mmcblk0p7": "6c586e13-07",
}


@pytest.fixture
def partuuids():
    """Device path to PARTUUID mapping of the standard layout."""
    return dict(PARTUUIDS)


# ==============================================================================
# Logging Fixtures
# ==============================================================================


@pytest.fixture
def log_records():
    """Collect loguru records emitted during the test."""
    records: List[dict] = []

    def sink(message):
        records.append(message.record)

    handler_id = logger.add(sink, level="TRACE", enqueue=False)
    yield records
    logger.remove(handler_id)

