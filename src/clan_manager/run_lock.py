"""
Run-level mutual exclusion.

Every pipeline run holds an exclusive ``flock`` on a lock file in the data
directory for its whole duration, so two runs never interleave reads and
writes of the persisted stores. Acquisition is polled until a timeout;
the kernel drops the lock if the holding process dies. A held instance
refuses further acquisitions, so coroutines sharing one RunLock exclude
each other as well.
"""

import asyncio
import fcntl
import os
import time
from pathlib import Path
from typing import Optional

from .exceptions import RunLockError


class RunLock:
    """Async context manager around an exclusive file lock."""

    POLL_INTERVAL = 0.5

    def __init__(self, path: Path, timeout: float = 30.0) -> None:
        self._path = Path(path)
        self._timeout = timeout
        self._fd: Optional[int] = None

    @property
    def locked(self) -> bool:
        return self._fd is not None

    def try_acquire(self) -> bool:
        """One non-blocking attempt; True if this call took the lock."""
        if self._fd is not None:
            return False

        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self._path, os.O_RDWR | os.O_CREAT, 0o644)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            os.close(fd)
            return False
        except OSError:
            os.close(fd)
            raise

        os.ftruncate(fd, 0)
        os.write(fd, str(os.getpid()).encode("ascii"))
        self._fd = fd
        return True

    async def acquire(self) -> None:
        """
        Raises:
            RunLockError: If the lock is still held elsewhere after the timeout
        """
        deadline = time.monotonic() + self._timeout
        while not self.try_acquire():
            if time.monotonic() >= deadline:
                raise RunLockError(
                    code="system_busy",
                    message="System busy: another run holds the lock",
                    details={"lock_file": str(self._path), "timeout": self._timeout},
                )
            await asyncio.sleep(self.POLL_INTERVAL)

    def release(self) -> None:
        if self._fd is None:
            return
        try:
            fcntl.flock(self._fd, fcntl.LOCK_UN)
        finally:
            os.close(self._fd)
            self._fd = None

    async def __aenter__(self) -> "RunLock":
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()
