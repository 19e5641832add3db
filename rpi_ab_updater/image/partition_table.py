"""Partition table parsing for the leading sectors of a disk image.

Only the first 34 sectors of an image are available: the MBR in sector 0, and
for GPT disks the header in sector 1 followed by up to 128 entries of 128
bytes in sectors 2-33. Both layouts are decoded with ``struct``.

MBR entry (16 bytes at offset 446 + 16 * n):
    +4  partition type (0x00 = unused, 0xEE = GPT protective)
    +8  first LBA (uint32 LE)
    +12 sector count (uint32 LE)

GPT header (sector 1):
    +0  "EFI PART"
    +72 entry array LBA (uint64 LE)
    +80 number of entries (uint32 LE)
    +84 entry size (uint32 LE)

GPT entry:
    +0  type GUID (all zero = unused)
    +32 first LBA (uint64 LE)
    +40 last LBA (uint64 LE, inclusive)
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from pathlib import Path

SECTOR_SIZE = 512
MBR_SIGNATURE = b"\x55\xaa"
MBR_PARTITION_OFFSET = 446
MBR_ENTRY_SIZE = 16
GPT_PROTECTIVE_TYPE = 0xEE
GPT_SIGNATURE = b"EFI PART"
GPT_HEADER_SIZE = 92


class PartitionTableError(ValueError):
    """The data does not contain a readable partition table."""


@dataclass(frozen=True)
class PartitionEntry:
    number: int
    start_sector: int
    end_sector: int  # inclusive

    @property
    def size_sectors(self) -> int:
        return self.end_sector - self.start_sector + 1


@dataclass(frozen=True)
class PartitionTable:
    kind: str  # "dos" or "gpt"
    partitions: tuple[PartitionEntry, ...]

    def get(self, number: int) -> PartitionEntry | None:
        for partition in self.partitions:
            if partition.number == number:
                return partition
        return None


def parse_mbr_entries(data: bytes) -> list[tuple[int, int, int, int]]:
    """Raw ``(number, type, first_lba, sector_count)`` tuples of the MBR."""
    if len(data) < SECTOR_SIZE or data[510:512] != MBR_SIGNATURE:
        raise PartitionTableError("Missing MBR boot signature")
    entries = []
    for index in range(4):
        offset = MBR_PARTITION_OFFSET + index * MBR_ENTRY_SIZE
        part_type = data[offset + 4]
        first_lba, sector_count = struct.unpack_from("<II", data, offset + 8)
        entries.append((index + 1, part_type, first_lba, sector_count))
    return entries


def parse_gpt(data: bytes) -> PartitionTable:
    header_offset = SECTOR_SIZE
    if data[header_offset : header_offset + 8] != GPT_SIGNATURE:
        raise PartitionTableError("Protective MBR without a GPT header")
    if len(data) < header_offset + GPT_HEADER_SIZE:
        raise PartitionTableError(f"Truncated GPT header: {len(data)} bytes")
    entries_lba = struct.unpack_from("<Q", data, header_offset + 72)[0]
    entry_count, entry_size = struct.unpack_from("<II", data, header_offset + 80)
    if entry_size < 56:
        raise PartitionTableError(f"Invalid GPT entry size: {entry_size}")

    partitions = []
    for index in range(entry_count):
        offset = entries_lba * SECTOR_SIZE + index * entry_size
        if offset + entry_size > len(data):
            break
        type_guid = data[offset : offset + 16]
        if type_guid == b"\x00" * 16:
            continue
        first_lba, last_lba = struct.unpack_from("<QQ", data, offset + 32)
        if last_lba < first_lba:
            continue
        partitions.append(PartitionEntry(index + 1, first_lba, last_lba))
    return PartitionTable(kind="gpt", partitions=tuple(partitions))


def parse_partition_table(data: bytes) -> PartitionTable:
    """Decode the partition table found in the leading sectors ``data``.

    Raises:
        PartitionTableError: If neither a MBR nor a GPT can be read
    """
    entries = parse_mbr_entries(data)
    if any(part_type == GPT_PROTECTIVE_TYPE for _, part_type, _, _ in entries):
        return parse_gpt(data)

    partitions = tuple(
        PartitionEntry(number, first_lba, first_lba + sector_count - 1)
        for number, part_type, first_lba, sector_count in entries
        if part_type != 0 and sector_count > 0
    )
    return PartitionTable(kind="dos", partitions=partitions)


def read_partition_table(path: Path) -> PartitionTable:
    """Decode the partition table stored in the file at ``path``."""
    return parse_partition_table(Path(path).read_bytes())
