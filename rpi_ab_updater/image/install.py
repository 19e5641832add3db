"""Stream image partitions into the inactive partition set.

Each partition is written by its own ``dd``. For a compressed image dd reads
a fresh decompressor pipe and discards everything before the partition's
byte offset; for a raw image it seeks there. Writes use ``conv=notrunc`` so
the target keeps any bytes past the copied region.
"""

from __future__ import annotations

from typing import Optional

from rpi_ab_updater.domain.models import (
    ImageLayout,
    PartitionSet,
    sectors_to_mib,
)
from rpi_ab_updater.logging import LoggerFactory
from rpi_ab_updater.storage.exceptions import ImageStreamError

from .command_runners import (
    ProgressCallback,
    bytes_copied_from_output,
    make_progress_logger,
    run_checked_with_streaming_progress,
)
from .sources import ImageSource

log = LoggerFactory.for_image()

DEFAULT_BLOCK_SIZE = "4M"


def build_dd_command(
    target_device: str,
    offset_bytes: int,
    size_bytes: Optional[int] = None,
    *,
    input_args: Optional[list[str]] = None,
    block_size: str = DEFAULT_BLOCK_SIZE,
) -> list[str]:
    """dd invocation copying ``size_bytes`` from ``offset_bytes`` of the input.

    Offsets are given in bytes (``skip_bytes``/``count_bytes``) so a large
    block size can be used. ``fullblock`` is required when reading a pipe.
    """
    iflags = ["fullblock", "skip_bytes"]
    command = ["dd", *(input_args or []), f"of={target_device}", f"bs={block_size}"]
    if size_bytes is not None:
        iflags.append("count_bytes")
    command.append(f"iflag={','.join(iflags)}")
    command.append(f"skip={offset_bytes}")
    if size_bytes is not None:
        command.append(f"count={size_bytes}")
    command.extend(["conv=notrunc,fsync", "status=progress"])
    return command


def install_partition(
    source: ImageSource,
    target_device: str,
    offset_bytes: int,
    size_bytes: Optional[int] = None,
    *,
    block_size: str = DEFAULT_BLOCK_SIZE,
    progress_callback: Optional[ProgressCallback] = None,
) -> int:
    """Copy one partition of ``source`` onto ``target_device``.

    Args:
        source: Image to read
        target_device: Block device to overwrite
        offset_bytes: Byte offset of the partition inside the image
        size_bytes: Bytes to copy; None copies to the end of the image
        block_size: dd block size
        progress_callback: Receives StreamProgress samples

    Returns:
        Number of bytes written, as reported by dd (0 if dd printed no summary)

    Raises:
        ImageStreamError: If decompression or the write fails, or fewer than
            ``size_bytes`` bytes were written
    """
    command = build_dd_command(
        target_device,
        offset_bytes,
        size_bytes,
        input_args=source.dd_input_args(),
        block_size=block_size,
    )
    try:
        with source.open_stream(partial=size_bytes is not None) as stream:
            result = run_checked_with_streaming_progress(
                command,
                total_bytes=size_bytes,
                stdin_source=stream,
                progress_callback=progress_callback,
            )
    except (RuntimeError, OSError) as error:
        raise ImageStreamError(
            f"Writing {target_device} failed: {error}", target=target_device
        ) from error

    copied = bytes_copied_from_output(result.stderr)
    if size_bytes is not None and copied is not None and copied < size_bytes:
        raise ImageStreamError(
            f"Short write to {target_device}: {copied} of {size_bytes} bytes",
            target=target_device,
        )
    return copied or 0


def install_image(
    source: ImageSource,
    layout: ImageLayout,
    target: PartitionSet,
    *,
    block_size: str = DEFAULT_BLOCK_SIZE,
) -> None:
    """Stream the boot and root partitions of ``source`` into ``target``."""
    if layout.clamped:
        copied_mib = sectors_to_mib(layout.boot_size_sectors)
        original_mib = sectors_to_mib(layout.boot_size_sectors_original)
        log.info(
            f"Streaming partial boot partition ({copied_mib} MB of {original_mib} MB) "
            f"to {target.boot_device} ..."
        )
        log.warning(
            "Boot partition contents beyond the target size will be missing "
            "due to size limitation!"
        )
    else:
        log.info(f"Streaming boot partition to {target.boot_device} ...")
    install_partition(
        source,
        target.boot_device,
        layout.boot_offset_bytes,
        layout.boot_size_bytes,
        block_size=block_size,
        progress_callback=make_progress_logger("boot"),
    )

    log.info(f"Streaming root partition to {target.root_device} ...")
    install_partition(
        source,
        target.root_device,
        layout.root_offset_bytes,
        block_size=block_size,
        progress_callback=make_progress_logger("root"),
    )
