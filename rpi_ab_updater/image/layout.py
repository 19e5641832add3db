"""Boot and root partition offsets of a compressed image.

Only the first sectors of the image are decompressed: enough to hold a MBR or
a GPT with its full entry array. Partition 1 is the boot partition, partition
2 the root partition.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from rpi_ab_updater.domain.models import (
    DEFAULT_BOOT_SIZE_SECTORS,
    DEFAULT_BOOT_START_SECTOR,
    DEFAULT_ROOT_START_SECTOR,
    SECTOR_SIZE,
    ImageLayout,
    sectors_to_mib,
)
from rpi_ab_updater.logging import LoggerFactory

from .partition_table import PartitionTableError, read_partition_table
from .sources import ImageSource

log = LoggerFactory.for_image()

HEADER_SECTORS = 34
BOOT_PARTITION_NUMBER = 1
ROOT_PARTITION_NUMBER = 2


def default_layout(
    boot_start: int = DEFAULT_BOOT_START_SECTOR,
    boot_size: int = DEFAULT_BOOT_SIZE_SECTORS,
    root_start: int = DEFAULT_ROOT_START_SECTOR,
) -> ImageLayout:
    return ImageLayout(
        boot_start_sector=boot_start,
        boot_size_sectors=boot_size,
        boot_size_sectors_original=boot_size,
        root_start_sector=root_start,
        detected=False,
    )


def clamp_boot_size(image_boot_sectors: int, target_capacity_bytes: int) -> int:
    """Sectors of the boot partition that fit on the target."""
    target_sectors = target_capacity_bytes // SECTOR_SIZE
    return min(image_boot_sectors, target_sectors)


def extract_image_header(
    source: ImageSource, scratch_file: Path, sectors: int = HEADER_SECTORS
) -> Path:
    """Write the first ``sectors`` sectors of the decompressed image to a file."""
    header = source.read_head(sectors * SECTOR_SIZE)
    scratch_file.write_bytes(header)
    log.debug(f"Extracted {len(header)} header bytes to {scratch_file}")
    return scratch_file


def inspect_image_layout(
    source: ImageSource,
    target_boot_capacity_bytes: int,
    scratch_file: Path,
    *,
    header_sectors: int = HEADER_SECTORS,
    defaults: Optional[ImageLayout] = None,
) -> ImageLayout:
    """Detect the boot/root layout of ``source``.

    Falls back to ``defaults`` (8192 / 524288 / 532480 sectors unless given)
    when the partition table cannot be read. The boot copy length is clamped
    to the target capacity; the root partition is never clamped.

    Args:
        source: Image to inspect
        target_boot_capacity_bytes: Size of the boot partition being written
        scratch_file: Where the leading sectors are stored for parsing
        header_sectors: How many leading sectors to decompress
        defaults: Layout used when detection fails

    Raises:
        ImageStreamError: If the decompressor fails before the header is read
    """
    defaults = defaults or default_layout()
    log.info("Analyzing compressed image structure ...")
    extract_image_header(source, scratch_file, header_sectors)

    try:
        table = read_partition_table(scratch_file)
    except PartitionTableError as error:
        log.warning(f"Failed to read partition info: {error}")
        table = None

    boot = table.get(BOOT_PARTITION_NUMBER) if table else None
    root = table.get(ROOT_PARTITION_NUMBER) if table else None
    if table:
        log.info(f"Image partition table: {table.kind}")
        for partition in table.partitions:
            log.info(
                f"  img{partition.number}: start {partition.start_sector} "
                f"end {partition.end_sector} sectors {partition.size_sectors}"
            )

    if boot is None:
        log.warning(
            "Could not detect boot partition details from image, using defaults ..."
        )
        boot_start = defaults.boot_start_sector
        boot_size_original = defaults.boot_size_sectors_original
        boot_size = defaults.boot_size_sectors
    else:
        boot_start = boot.start_sector
        boot_size_original = boot.size_sectors
        boot_size = clamp_boot_size(boot_size_original, target_boot_capacity_bytes)
        if boot_size < boot_size_original:
            log.warning(
                f"Boot partition in image ({sectors_to_mib(boot_size_original)} MB) "
                f"is larger than target partition "
                f"({target_boot_capacity_bytes // (1024 * 1024)} MB) ..."
            )
            log.warning("Will copy only what fits in the target partition ...")
        log.info(
            f"Detected boot partition start: {boot_start}, size: {boot_size} "
            f"sectors ({sectors_to_mib(boot_size)} MB) ..."
        )

    root_start = defaults.root_start_sector
    if root is not None:
        root_start = root.start_sector
        log.info(f"Detected root partition start: {root_start}")

    layout = ImageLayout(
        boot_start_sector=boot_start,
        boot_size_sectors=boot_size,
        boot_size_sectors_original=boot_size_original,
        root_start_sector=root_start,
        detected=boot is not None and root is not None,
    )
    log.info(f"Using boot partition offset: {layout.boot_start_sector} sectors")
    log.info(f"Using root partition offset: {layout.root_start_sector} sectors")
    return layout
