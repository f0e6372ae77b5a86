"""
Process-exclusive run lock.

The lock file holds the owner's PID, and the owner keeps an exclusive
flock on it for the lifetime of the run. The kernel drops the flock when
its holder exits, so a lock file left behind by a dead process is simply
locked again; there is no separate stale-lock reclaim step to race on.
Backup and restore share the same lock since both touch the data
directory.
"""

import fcntl
import logging
import os
import signal
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from octeth_backup.core.exceptions import AlreadyRunningError, LockError, RunInterrupted

logger = logging.getLogger(__name__)

# Attempts before giving up when the lock file keeps being replaced under us
MAX_LOCK_ATTEMPTS = 3


def _parse_pid(content: bytes) -> int | None:
    try:
        return int(content.decode(errors="replace").split()[0])
    except (ValueError, IndexError):
        return None


class RunLock:
    """
    Exclusive lock held for the lifetime of a run.

    Usage:
        with RunLock(settings.paths.lock_file):
            ...
    """

    def __init__(self, path: Path):
        self.path = path
        self._fd: int | None = None

    @property
    def held(self) -> bool:
        return self._fd is not None

    def _owns_path(self, fd: int) -> bool:
        """Check the locked descriptor is still the file at self.path."""
        try:
            current = os.stat(self.path)
        except FileNotFoundError:
            return False
        opened = os.fstat(fd)
        return (current.st_dev, current.st_ino) == (opened.st_dev, opened.st_ino)

    def _holder_pid(self) -> int | None:
        try:
            return _parse_pid(self.path.read_bytes())
        except OSError:
            return None

    def acquire(self) -> None:
        """
        Acquire the lock.

        Raises:
            AlreadyRunningError: If another process holds the lock
            LockError: If the lock file cannot be created or locked
        """
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise LockError(f"Cannot create lock directory: {e}", lock_file=str(self.path)) from e

        for _ in range(MAX_LOCK_ATTEMPTS):
            try:
                fd = os.open(self.path, os.O_CREAT | os.O_RDWR, 0o644)
            except OSError as e:
                raise LockError(f"Cannot open lock file: {e}", lock_file=str(self.path)) from e

            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError:
                os.close(fd)
                raise AlreadyRunningError(lock_file=str(self.path), pid=self._holder_pid())
            except OSError as e:
                os.close(fd)
                raise LockError(f"Cannot lock {self.path}: {e}", lock_file=str(self.path)) from e

            # The previous holder may have unlinked the file between our open and flock
            if not self._owns_path(fd):
                os.close(fd)
                continue

            previous = _parse_pid(os.pread(fd, 64, 0))
            if previous is not None and previous != os.getpid():
                logger.warning(f"Reclaiming stale lock file {self.path} (pid {previous})")
            os.ftruncate(fd, 0)
            os.pwrite(fd, f"{os.getpid()}\n".encode(), 0)
            self._fd = fd
            logger.debug(f"Acquired run lock {self.path}")
            return

        raise LockError("Lock file kept changing while locking it", lock_file=str(self.path))

    def release(self) -> None:
        """Release the lock; the file is removed only if it is still ours."""
        fd = self._fd
        if fd is None:
            return
        self._fd = None
        try:
            # Unlink before unlocking so no waiter can lock a file about to vanish
            if self._owns_path(fd):
                self.path.unlink(missing_ok=True)
        finally:
            os.close(fd)
        logger.debug(f"Released run lock {self.path}")

    def __enter__(self) -> "RunLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


@contextmanager
def terminate_on_signal(signals: tuple[int, ...] = (signal.SIGTERM, signal.SIGHUP)) -> Iterator[None]:
    """
    Turn termination signals into RunInterrupted for the enclosed block.

    Scoped cleanup (lock release, temp directory removal) then runs as for
    any other failure. Only effective on the main thread.
    """
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def handler(signum, frame):
        raise RunInterrupted(signum)

    previous = {sig: signal.signal(sig, handler) for sig in signals}
    try:
        yield
    finally:
        for sig, old in previous.items():
            signal.signal(sig, old)
