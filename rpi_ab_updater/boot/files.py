"""Small file writes for boot configuration."""

from __future__ import annotations

import os
from pathlib import Path
from uuid import uuid4


def _gen_tmp_fname() -> str:
    return f"tmp_{uuid4().hex[:8]}"


def write_str_to_file_atomic(fpath: Path, content: str) -> None:
    """Overwrite ``fpath`` with ``content`` atomically.

    The content is written and fsynced to a temporary file next to ``fpath``
    and then renamed over it, so a power cut leaves either the old or the new
    file. Rename is atomic on the same filesystem, including vfat.
    """
    fpath = Path(os.path.realpath(fpath))
    tmp_f = fpath.parent / _gen_tmp_fname()
    try:
        with open(tmp_f, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_f, fpath)
    finally:
        tmp_f.unlink(missing_ok=True)
