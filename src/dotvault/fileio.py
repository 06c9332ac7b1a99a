"""
Local file plumbing -- atomic writes, backups, and the run lock.

Every secret written by dotvault goes through atomic_write(): a temp file
in the target directory, fsync, then rename. An interrupted run leaves
either the old file or the new one, never half of either.
"""

from __future__ import annotations

import fcntl
import logging
import os
import shutil
import tempfile
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional, Union

logger = logging.getLogger("dotvault.fileio")

PRIVATE_MODE = 0o600
PUBLIC_MODE = 0o644
EXEC_MODE = 0o700
BACKUP_TIMESTAMP = "%Y%m%d%H%M%S"


def atomic_write(
    path: Path,
    content: Union[str, bytes],
    mode: int = PRIVATE_MODE,
) -> None:
    """Write content to path atomically with the given permission bits.

    The temp file is created with mode 0600 by mkstemp and only widened
    (via chmod) once the content is on disk, so the file is never
    briefly readable by others.

    Args:
        path: Destination file.
        content: Text (UTF-8 encoded) or raw bytes.
        mode: Final permission bits.

    Raises:
        OSError: If the directory cannot be created or the write fails.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    data = content.encode("utf-8") if isinstance(content, str) else content

    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
        os.chmod(tmp_name, mode)
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


def backup_file(path: Path, now: Optional[datetime] = None) -> Optional[Path]:
    """Copy an existing file to ``<path>.bak-<timestamp>`` (owner-only).

    Args:
        path: File about to be overwritten.
        now: Timestamp override (tests).

    Returns:
        Path of the backup, or None if there was nothing to back up.
    """
    path = Path(path)
    if not path.is_file():
        return None
    stamp = (now or datetime.now()).strftime(BACKUP_TIMESTAMP)
    backup = path.with_name(f"{path.name}.bak-{stamp}")
    shutil.copy2(path, backup)
    os.chmod(backup, PRIVATE_MODE)
    logger.info("Backed up %s -> %s", path, backup.name)
    return backup


@contextmanager
def file_lock(lock_path: Path) -> Iterator[None]:
    """Hold an exclusive advisory lock for the duration of the block.

    Blocks until any other dotvault process releases the lock.
    """
    lock_path = Path(lock_path)
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    with open(lock_path, "a+") as fh:
        os.chmod(lock_path, PRIVATE_MODE)
        fcntl.flock(fh.fileno(), fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(fh.fileno(), fcntl.LOCK_UN)


def file_mode(path: Path) -> int:
    """Permission bits of an existing file."""
    return Path(path).stat().st_mode & 0o777
