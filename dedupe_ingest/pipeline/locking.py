"""Single-flight guards for ingestion cycles."""

from __future__ import annotations

import errno
import fcntl
import logging
import os
import threading
from pathlib import Path
from typing import IO, Optional

logger = logging.getLogger(__name__)


class ProcessLock:
    """Process lock to prevent multiple workers from running against one sink"""

    def __init__(self, lock_file: str):
        self.lock_file = lock_file
        self.lock_file_handle: Optional[IO[str]] = None

    def acquire(self) -> bool:
        """Acquire a lock, return True if successful, False otherwise"""
        Path(self.lock_file).parent.mkdir(parents=True, exist_ok=True)
        try:
            self.lock_file_handle = open(self.lock_file, "a+")
            fcntl.flock(self.lock_file_handle, fcntl.LOCK_EX | fcntl.LOCK_NB)

            self.lock_file_handle.seek(0)
            self.lock_file_handle.truncate()
            self.lock_file_handle.write(str(os.getpid()))
            self.lock_file_handle.flush()

            logger.info(f"Process lock acquired (PID: {os.getpid()})")
            return True
        except OSError as e:
            if e.errno in (errno.EAGAIN, errno.EACCES):
                pid = self._holder_pid()
                logger.warning(f"Another process is already running (PID: {pid or 'unknown'})")
            else:
                logger.error(f"Failed to acquire process lock: {e}")

            if self.lock_file_handle:
                self.lock_file_handle.close()
                self.lock_file_handle = None

            return False

    def _holder_pid(self) -> Optional[str]:
        try:
            with open(self.lock_file, "r") as f:
                return f.read().strip() or None
        except OSError:
            return None

    def release(self) -> None:
        """Release the lock"""
        if self.lock_file_handle:
            try:
                fcntl.flock(self.lock_file_handle, fcntl.LOCK_UN)
            finally:
                self.lock_file_handle.close()
                self.lock_file_handle = None
            logger.info("Process lock released")

    def __enter__(self) -> "ProcessLock":
        return self

    def __exit__(self, *exc) -> None:
        self.release()


class InFlightGuard:
    """Non-blocking in-process marker: at most one cycle runs at a time."""

    def __init__(self):
        self._lock = threading.Lock()

    def try_enter(self) -> bool:
        return self._lock.acquire(blocking=False)

    def exit(self) -> None:
        self._lock.release()

    @property
    def busy(self) -> bool:
        return self._lock.locked()
