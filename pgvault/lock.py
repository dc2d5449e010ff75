"""Per-path exclusive lock, so a slow dump never stacks behind the next run."""

from __future__ import annotations

import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import IO

if os.name == "nt":
    fcntl = None
else:
    import fcntl

logger = logging.getLogger(__name__)


@dataclass
class LockHandle:
    path: str
    file: IO[bytes] | None = None
    fd: int | None = None
    released: bool = False


def lock_path(path: str) -> tuple[LockHandle | None, bool]:
    """Try to take an exclusive lock on ``path`` without blocking.

    Returns ``(handle, True)`` when the lock is ours and ``(None, False)``
    when another process holds it. I/O and permission problems raise
    ``OSError``.
    """
    os.makedirs(os.path.dirname(path) or ".", mode=0o755, exist_ok=True)

    if fcntl is None:
        return _lock_exclusive_create(path)

    f = open(path, "wb")
    try:
        fcntl.flock(f.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
    except BlockingIOError:
        f.close()
        return None, False
    except OSError:
        f.close()
        raise

    logger.debug(f"locked {path}")
    return LockHandle(path=path, file=f), True


def _lock_exclusive_create(path: str) -> tuple[LockHandle | None, bool]:
    # Without advisory locks the mere presence of the file means "locked"
    try:
        fd = os.open(path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
    except FileExistsError:
        return None, False
    return LockHandle(path=path, fd=fd), True


def unlock_path(handle: LockHandle | None) -> None:
    """Release the lock, close the handle and remove the file. Idempotent."""
    if handle is None or handle.released:
        return

    if handle.file is not None:
        if fcntl is not None:
            fcntl.flock(handle.file.fileno(), fcntl.LOCK_UN)
        handle.file.close()
    if handle.fd is not None:
        os.close(handle.fd)
    handle.released = True

    try:
        os.remove(handle.path)
    except FileNotFoundError:
        pass
    logger.debug(f"unlocked {handle.path}")


@contextmanager
def locked(path: str) -> Iterator[bool]:
    """Hold the lock on ``path`` for the block; yields whether it was acquired."""
    handle, acquired = lock_path(path)
    try:
        yield acquired
    finally:
        unlock_path(handle)
