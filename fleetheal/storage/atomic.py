"""
Atomic Write Operations
=======================

Pattern:
1. Write to temporary file {name}.tmp in the same directory
2. Flush and fsync
3. Atomic rename over the final path

A reader therefore sees either the previous document or the complete new
one. The cooldown ledger relies on this: a torn ledger would forget recent
repair attempts and reopen the door to healing loops.
"""

import contextlib
import os
from pathlib import Path

from fleetheal.core.exceptions import StorageError
from fleetheal.core.logging import get_logger

logger = get_logger("fleetheal.storage.atomic")


def _fsync_dir(path_dir: Path) -> None:
    try:
        fd = os.open(str(path_dir), os.O_RDONLY)
    except OSError:
        return
    try:
        os.fsync(fd)
    except OSError:
        # Some filesystems (and Windows) refuse fsync on directories.
        pass
    finally:
        os.close(fd)


def atomic_write(
    path: Path | str,
    content: str | bytes,
    encoding: str = "utf-8",
    sync: bool = True,
) -> None:
    """
    Write content to ``path`` atomically.

    Raises:
        StorageError: the write or the rename failed; the old file is untouched
    """
    path = Path(path)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    data = content.encode(encoding) if isinstance(content, str) else content

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(tmp_path, "wb") as f:
            f.write(data)
            if sync:
                f.flush()
                os.fsync(f.fileno())

        tmp_path.replace(path)

        if sync:
            _fsync_dir(path.parent)

    except OSError as e:
        logger.error("Atomic write failed", path=str(path), error=str(e))
        with contextlib.suppress(OSError):
            tmp_path.unlink(missing_ok=True)
        raise StorageError(path.name, str(e), cause=e) from e
