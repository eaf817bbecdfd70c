"""
Run lock — one apply at a time per host.

An advisory ``flock`` on a lock file. The kernel drops the lock when
the process dies, so a crashed run never leaves a stale lock behind.
"""

from __future__ import annotations

import fcntl
import logging
import os
from pathlib import Path

from homelab.core.errors import LockError

logger = logging.getLogger(__name__)


class RunLock:
    """Non-blocking exclusive lock, usable as a context manager.

    Raises:
        LockError: On acquire, if another run holds the lock or the
            lock file cannot be opened.
    """

    def __init__(self, path: Path):
        self.path = path
        self._fd: int | None = None

    @property
    def held(self) -> bool:
        return self._fd is not None

    def acquire(self) -> None:
        if self._fd is not None:
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o600)
        except OSError as e:
            raise LockError(f"cannot open lock file {self.path}: {e}") from e

        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError as e:
            os.close(fd)
            raise LockError(
                f"another provisioning run holds {self.path}; wait for it to finish"
            ) from e
        except OSError as e:
            os.close(fd)
            raise LockError(f"cannot lock {self.path}: {e}") from e

        # Record the holder for operators inspecting the file
        os.ftruncate(fd, 0)
        os.write(fd, f"{os.getpid()}\n".encode())
        self._fd = fd
        logger.debug("Acquired run lock %s", self.path)

    def release(self) -> None:
        if self._fd is None:
            return
        try:
            fcntl.flock(self._fd, fcntl.LOCK_UN)
        finally:
            os.close(self._fd)
            self._fd = None
        logger.debug("Released run lock %s", self.path)

    def __enter__(self) -> RunLock:
        self.acquire()
        return self

    def __exit__(self, *exc_info) -> None:
        self.release()
