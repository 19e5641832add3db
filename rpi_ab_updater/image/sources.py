"""Image sources and their streaming contract.

A compressed image can only be read front to back, so every consumer of a
``ForwardOnlySource`` starts a fresh decompressor and lets ``dd`` discard the
bytes in front of its own offset. Reading the partition table and writing two
partitions therefore decompresses the image three times, but never stores the
decompressed image on disk.

A ``SeekableSource`` is a raw ``.img`` file that ``dd`` can seek in directly.
"""

from __future__ import annotations

import subprocess
from contextlib import contextmanager
from pathlib import Path
from typing import IO, Iterator, Optional

from rpi_ab_updater.logging import LoggerFactory
from rpi_ab_updater.storage.exceptions import ImageStreamError, PreconditionError

from .compression import get_decompress_command, is_compressed, is_raw_image

log = LoggerFactory.for_image()

READ_CHUNK_SIZE = 4096


class ImageSource:
    """Common interface of image sources."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def dd_input_args(self) -> list[str]:
        """Extra ``dd`` arguments naming the input, if dd reads the file itself."""
        return []

    @contextmanager
    def open_stream(self, *, partial: bool = False) -> Iterator[Optional[IO[bytes]]]:
        """Yield a readable stream for dd's stdin, or None if dd reads ``path``.

        Args:
            partial: The consumer stops reading before the end of the image
        """
        yield None

    def read_head(self, size: int) -> bytes:
        """Read the first ``size`` bytes of the decompressed image."""
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}({str(self.path)!r})"


class SeekableSource(ImageSource):
    """Uncompressed image file; dd seeks to each partition directly."""

    def dd_input_args(self) -> list[str]:
        return [f"if={self.path}"]

    def read_head(self, size: int) -> bytes:
        with open(self.path, "rb") as f:
            return f.read(size)


class ForwardOnlySource(ImageSource):
    """Compressed image; each stream re-runs the decompressor from the start."""

    def __init__(self, path: Path):
        super().__init__(path)
        self.last_returncode: Optional[int] = None
        self.last_stderr = ""

    def decompress_command(self) -> list[str]:
        try:
            return get_decompress_command(self.path)
        except (ValueError, RuntimeError) as error:
            raise PreconditionError(str(error)) from error

    @contextmanager
    def open_stream(self, *, partial: bool = False) -> Iterator[Optional[IO[bytes]]]:
        command = self.decompress_command()
        log.debug(f"Starting decompressor: {' '.join(command)}")
        process = subprocess.Popen(
            command, stdout=subprocess.PIPE, stderr=subprocess.PIPE
        )
        try:
            yield process.stdout
        finally:
            # a decompressor still writing now gets SIGPIPE and exits
            if process.stdout:
                process.stdout.close()
            process.wait()
            stderr = b""
            if process.stderr:
                stderr = process.stderr.read()
                process.stderr.close()
            self.last_returncode = process.returncode
            self.last_stderr = stderr.decode(errors="replace").strip()
        if not partial and process.returncode != 0:
            message = self.last_stderr or f"exit status {process.returncode}"
            raise ImageStreamError(f"Image decompression failed: {message}")

    def read_head(self, size: int) -> bytes:
        chunks = []
        remaining = size
        with self.open_stream(partial=True) as stream:
            while remaining > 0:
                chunk = stream.read(min(READ_CHUNK_SIZE, remaining))
                if not chunk:
                    break
                chunks.append(chunk)
                remaining -= len(chunk)
        if remaining and self.last_returncode != 0:
            message = self.last_stderr or f"exit status {self.last_returncode}"
            raise ImageStreamError(f"Image decompression failed: {message}")
        return b"".join(chunks)


def open_image_source(path: Path, *, allow_raw: bool = False) -> ImageSource:
    """Source for ``path`` chosen by its suffix.

    Raises:
        PreconditionError: If the suffix is not a recognized compression
            (or ``.img`` while raw images are disabled)
    """
    path = Path(path)
    if is_compressed(path):
        return ForwardOnlySource(path)
    if allow_raw and is_raw_image(path):
        return SeekableSource(path)
    raise PreconditionError(
        f"Image must be a compressed .gz, .xz or .zst file: {path.name}"
    )
