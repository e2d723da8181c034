"""Filesystem helpers."""

from __future__ import annotations

import os
import shutil
import tempfile
from pathlib import Path
from typing import BinaryIO

__all__ = ["atomic_write_stream"]


def atomic_write_stream(path: Path, stream: BinaryIO) -> int:
    """Copy stream into path atomically using temp file + replace.

    Returns the number of bytes written. A half-written bundle never
    appears under the final name.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(
        prefix=f".{path.name}.",
        suffix=".tmp",
        dir=str(path.parent),
    )
    tmp_path = Path(tmp_name)

    try:
        with os.fdopen(fd, "wb") as handle:
            shutil.copyfileobj(stream, handle)
            handle.flush()
            os.fsync(handle.fileno())
            written = handle.tell()
        os.replace(tmp_path, path)
        return written
    finally:
        if tmp_path.exists():
            tmp_path.unlink(missing_ok=True)
