"""Checks run before anything is written."""

from __future__ import annotations

import os
import shutil
from pathlib import Path
from typing import Iterable

from rpi_ab_updater.image.compression import get_decompress_command, is_compressed
from rpi_ab_updater.storage.exceptions import PreconditionError


def require_root() -> None:
    if os.geteuid() != 0:
        raise PreconditionError("need elevated permissions ... run as root (sudo)")


def require_commands(commands: Iterable[str]) -> None:
    for command in commands:
        if not shutil.which(command):
            raise PreconditionError(f"Required command '{command}' not found")


def validate_image(image_path: Path, *, allow_raw: bool = False) -> Path:
    """Check that ``image_path`` is an image file this tool can stream.

    Raises:
        PreconditionError: If the file is missing or its suffix is not a
            supported compression (or ``.img`` with ``allow_raw``)
    """
    image_path = Path(image_path)
    if not image_path.is_file():
        raise PreconditionError(f"Image file not found: {image_path}")
    if is_compressed(image_path):
        try:
            get_decompress_command(image_path)
        except RuntimeError as error:
            raise PreconditionError(str(error)) from error
        return image_path
    if allow_raw and image_path.suffix.lower() == ".img":
        return image_path
    raise PreconditionError(
        f"This tool requires a compressed .gz, .xz or .zst image: {image_path.name}"
    )
