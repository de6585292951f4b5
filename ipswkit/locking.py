"""Advisory, exclusive locking of a lock file shared between processes."""

from __future__ import annotations

import logging
import os
from typing import IO, Any

__all__ = ["LockError", "FileLock"]

log = logging.getLogger(__name__)

if os.name == "nt":
    import msvcrt

    def _lock(fp: IO[Any]) -> None:
        fp.seek(0)
        msvcrt.locking(fp.fileno(), msvcrt.LK_LOCK, 1)

    def _unlock(fp: IO[Any]) -> None:
        fp.seek(0)
        msvcrt.locking(fp.fileno(), msvcrt.LK_UNLCK, 1)

else:
    import fcntl

    def _lock(fp: IO[Any]) -> None:
        fcntl.lockf(fp.fileno(), fcntl.LOCK_EX)

    def _unlock(fp: IO[Any]) -> None:
        fcntl.lockf(fp.fileno(), fcntl.LOCK_UN)


class LockError(OSError):
    """The lock file could not be opened, locked or unlocked."""


class FileLock:
    """An exclusive lock held on ``filename``.

    The file is created when missing. :meth:`acquire` blocks until the lock
    is granted. The lock is also usable as a context manager.
    """

    def __init__(self, filename: str | os.PathLike[str]) -> None:
        self.filename = os.fspath(filename)
        self._fp: IO[Any] | None = None

    @property
    def locked(self) -> bool:
        """True while this object holds the lock."""
        return self._fp is not None

    def acquire(self) -> FileLock:
        """Open the lock file and wait for an exclusive lock on it."""
        if self._fp is not None:
            raise LockError(f"lock on '{self.filename}' is already held")
        try:
            fp = open(self.filename, "a+")
        except OSError as exc:
            log.debug("could not open or create lockfile '%s'", self.filename)
            raise LockError(f"could not open or create lockfile '{self.filename}'") from exc
        try:
            _lock(fp)
        except OSError as exc:
            fp.close()
            log.debug("can't lock file, error %s", exc.errno)
            raise LockError(f"can't lock file '{self.filename}'") from exc
        self._fp = fp
        return self

    def release(self) -> None:
        """Give up the lock and close the lock file."""
        fp, self._fp = self._fp, None
        if fp is None:
            raise LockError(f"lock on '{self.filename}' is not held")
        try:
            _unlock(fp)
        except OSError as exc:
            log.debug("can't unlock file, error %s", exc.errno)
            raise LockError(f"can't unlock file '{self.filename}'") from exc
        finally:
            fp.close()

    def __enter__(self) -> FileLock:
        return self.acquire()

    def __exit__(self, *args: object) -> None:
        self.release()