"""
Atomic File Persistence
=======================

Replace a file's content so that readers observe the old content, the new
content, or no file at all; never a partial write.

Procedure:
1. Create a temporary sibling in the destination directory
2. Write, flush and fsync the data; apply the requested mode
3. os.replace() the temporary over the destination
4. On any failure the temporary is removed and the error propagates
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path


def write_atomic(path: str | Path, data: bytes, mode: int = 0o600) -> None:
    """
    Atomically write data to path with the given permission bits.

    Raises:
        OSError: If the directory is not writable or the replace fails
    """
    path = Path(path)
    fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
    tmp = Path(tmp_name)

    try:
        with os.fdopen(fd, "wb") as f:
            if hasattr(os, "fchmod"):
                os.fchmod(f.fileno(), mode)
            f.write(data)
            f.flush()
            os.fsync(f.fileno())

        if not hasattr(os, "fchmod"):
            os.chmod(tmp, mode)
        os.replace(tmp, path)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise
