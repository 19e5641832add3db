"""Compression detection for OS images."""

from __future__ import annotations

import shutil
from pathlib import Path
from typing import Optional

# suffix -> (compression type, decompressor candidates in order of preference)
DECOMPRESSORS: dict[str, tuple[str, tuple[str, ...]]] = {
    ".gz": ("gzip", ("pigz", "gzip")),
    ".xz": ("xz", ("xz",)),
    ".zst": ("zstd", ("pzstd", "zstd")),
}


def get_compression_type(image_file: Path) -> Optional[str]:
    """Detect compression type from the file suffix.

    Returns:
        "gzip", "xz" or "zstd", or None if the suffix is not recognized
    """
    entry = DECOMPRESSORS.get(image_file.suffix.lower())
    return entry[0] if entry else None


def is_compressed(image_file: Path) -> bool:
    return get_compression_type(image_file) is not None


def is_raw_image(image_file: Path) -> bool:
    return image_file.suffix.lower() == ".img"


def get_decompress_command(image_file: Path) -> list[str]:
    """Command that writes the decompressed image to stdout.

    Raises:
        ValueError: If the suffix is not a known compression
        RuntimeError: If no decompressor is installed
    """
    entry = DECOMPRESSORS.get(image_file.suffix.lower())
    if entry is None:
        raise ValueError(f"Unsupported compression: {image_file.name}")
    compression, candidates = entry
    for candidate in candidates:
        tool = shutil.which(candidate)
        if tool:
            return [tool, "-dc", str(image_file)]
    raise RuntimeError(f"{compression} decompressor not found")
