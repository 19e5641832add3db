"""Command execution with dd progress tracking."""

from __future__ import annotations

import re
import select
import subprocess
from dataclasses import dataclass
from typing import IO, Callable, Optional

from rpi_ab_updater.logging import LoggerFactory, ThrottledLogger

log = LoggerFactory.for_image()
progress_log = LoggerFactory.for_progress()

_BYTES_RE = re.compile(r"(\d+)\s+bytes")
_RATE_RE = re.compile(r"(\d+(?:\.\d+)?)\s*([kMG]B|[KMG]iB)/s")
_RATE_UNITS = {
    "kB": 1000,
    "MB": 1000**2,
    "GB": 1000**3,
    "KiB": 1024,
    "MiB": 1024**2,
    "GiB": 1024**3,
}


@dataclass(frozen=True)
class StreamProgress:
    """A progress sample parsed from dd's ``status=progress`` output."""

    bytes_copied: int
    total_bytes: Optional[int] = None
    rate: Optional[float] = None  # bytes per second

    @property
    def ratio(self) -> Optional[float]:
        if not self.total_bytes:
            return None
        return max(0.0, min(1.0, self.bytes_copied / self.total_bytes))

    @property
    def eta_seconds(self) -> Optional[float]:
        if not self.rate or not self.total_bytes:
            return None
        return max(self.total_bytes - self.bytes_copied, 0) / self.rate


ProgressCallback = Callable[[StreamProgress], None]


def human_size(size_bytes):
    if size_bytes is None:
        return "0B"
    size = float(size_bytes)
    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if size < 1024.0:
            return f"{size:.1f}{unit}"
        size /= 1024.0
    return f"{size:.1f}PB"


def format_eta(seconds):
    """Format ETA in HH:MM:SS or MM:SS format."""
    if seconds is None:
        return None
    seconds = int(seconds)
    if seconds < 0:
        return None
    hours, remainder = divmod(seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours:
        return f"{hours:d}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


def parse_dd_progress(
    line: str, total_bytes: Optional[int] = None
) -> Optional[StreamProgress]:
    """Parse one dd progress/summary line, or return None if it has no byte count."""
    bytes_match = _BYTES_RE.search(line)
    if not bytes_match:
        return None
    rate = None
    rate_match = _RATE_RE.search(line)
    if rate_match:
        rate = float(rate_match.group(1)) * _RATE_UNITS[rate_match.group(2)]
    return StreamProgress(int(bytes_match.group(1)), total_bytes, rate)


def format_progress(progress: StreamProgress) -> str:
    parts = [f"Wrote {human_size(progress.bytes_copied)}"]
    if progress.ratio is not None:
        parts.append(f"{progress.ratio * 100:.1f}%")
    if progress.rate:
        parts.append(f"{human_size(progress.rate)}/s")
    eta = format_eta(progress.eta_seconds)
    if eta:
        parts.append(f"ETA {eta}")
    return " ".join(parts)


def make_progress_logger(key: str, interval_seconds: float = 5.0) -> ProgressCallback:
    """Progress callback that logs at most one line per interval."""
    throttled = ThrottledLogger(progress_log, interval_seconds)

    def _log_progress(progress: StreamProgress) -> None:
        progress_log.trace(format_progress(progress))
        throttled.info(key, f"{key}: {format_progress(progress)}")

    return _log_progress


def run_checked_with_streaming_progress(
    command: list[str],
    *,
    total_bytes: Optional[int] = None,
    stdin_source: Optional[IO[bytes]] = None,
    progress_callback: Optional[ProgressCallback] = None,
) -> subprocess.CompletedProcess:
    """Run ``command`` and report dd progress lines from its stderr.

    Returns:
        CompletedProcess with the collected stderr; ``stdout`` is empty

    Raises:
        RuntimeError: If the command exits non-zero
    """
    log.debug(f"Running command: {' '.join(command)}")
    process = subprocess.Popen(
        command,
        stdin=stdin_source,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.PIPE,
        text=True,
        encoding="utf-8",
        errors="replace",
    )
    stderr_lines = []
    refresh_interval = 1.0
    while True:
        ready, _, _ = select.select([process.stderr], [], [], refresh_interval)
        line = None
        if ready:
            # dd ends progress updates with \r, universal newlines split on it
            line = process.stderr.readline()
        if line:
            stderr_lines.append(line)
            progress = parse_dd_progress(line, total_bytes)
            if progress and progress_callback:
                progress_callback(progress)
        if process.poll() is not None and not line:
            break
    remaining_stderr = process.stderr.read() if process.stderr else ""
    if remaining_stderr:
        stderr_lines.append(remaining_stderr)
    process.wait()
    stderr_output = "".join(stderr_lines)
    if process.returncode != 0:
        message = stderr_output.strip() or "Command failed"
        raise RuntimeError(f"Command failed ({' '.join(command)}): {message}")
    return subprocess.CompletedProcess(
        command, process.returncode, stdout="", stderr=stderr_output
    )


def bytes_copied_from_output(stderr_output: str) -> Optional[int]:
    """Final byte count from dd's summary, or None if dd did not print one."""
    copied = None
    for line in stderr_output.splitlines():
        if "copied" in line:
            progress = parse_dd_progress(line)
            if progress:
                copied = progress.bytes_copied
    return copied


__all__ = [
    "StreamProgress",
    "bytes_copied_from_output",
    "format_eta",
    "format_progress",
    "human_size",
    "make_progress_logger",
    "parse_dd_progress",
    "run_checked_with_streaming_progress",
]
