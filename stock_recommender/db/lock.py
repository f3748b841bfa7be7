"""
Date-scoped run lock.

One generation run per trading date at a time, across processes. The lock
is a POSIX advisory ``flock`` on ``<lock_dir>/as_of_<date>.lock``:

  - acquisition is non-blocking; a held lock means another run is in flight;
  - it lives exactly as long as the open file descriptor, so the kernel drops
    it when the holder exits or is killed (no stale lock files to clean up);
  - the lock file itself is never deleted, since unlinking would let a third
    process lock a fresh inode while the second still holds the old one.

``flock`` locks belong to the open file description, so two ``DateLock``
objects for the same date conflict even within one process.
"""

from __future__ import annotations

import fcntl
import logging
import os
from datetime import date
from pathlib import Path
from typing import IO, Optional

logger = logging.getLogger(__name__)


class DateLock:
    """Non-blocking, session-scoped mutual exclusion keyed by trading date.

    Usage::

        lock = DateLock(lock_dir, as_of_date)
        if not lock.try_acquire():
            return  # another run holds it
        try:
            ...
        finally:
            lock.release()
    """

    def __init__(self, lock_dir: str | Path, as_of_date: date) -> None:
        self.as_of_date = as_of_date
        self.path = Path(lock_dir) / f"as_of_{as_of_date.isoformat()}.lock"
        self._fh: Optional[IO[str]] = None

    @property
    def held(self) -> bool:
        return self._fh is not None

    def try_acquire(self) -> bool:
        """Try to take the lock without waiting.

        Returns:
            ``True`` if this object now holds the lock, ``False`` if another
            holder has it.

        Raises:
            OSError: If the lock file cannot be created or opened.
        """
        if self._fh is not None:
            return True

        self.path.parent.mkdir(parents=True, exist_ok=True)
        fh = open(self.path, "a+", encoding="utf-8")
        try:
            fcntl.flock(fh.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            fh.close()
            logger.info("Date lock busy for %s (%s)", self.as_of_date, self.path)
            return False
        except Exception:
            fh.close()
            raise

        # Holder pid is informational only; the flock is the lock.
        fh.seek(0)
        fh.truncate()
        fh.write(f"{os.getpid()}\n")
        fh.flush()

        self._fh = fh
        logger.debug("Date lock acquired for %s", self.as_of_date)
        return True

    def release(self) -> None:
        """Release the lock if held. Safe to call more than once."""
        if self._fh is None:
            return
        fh, self._fh = self._fh, None
        try:
            fcntl.flock(fh.fileno(), fcntl.LOCK_UN)
        finally:
            fh.close()
        logger.debug("Date lock released for %s", self.as_of_date)

    def __enter__(self) -> "DateLock":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()
