"""
Cross-invocation process lock for the profile store.

The lock is a small JSON file ``{"pid": ..., "timestamp": ...}`` next to the
profile document. A record older than ``LOCK_STALE_SECONDS`` is treated as
abandoned and cleared by the next acquirer. The record is created
exclusively, and only the run that wrote it may renew or remove it. While
held, SIGINT and SIGTERM release the lock before the process unwinds, and an
``atexit`` hook covers any other exit path.
"""

import atexit
import logging
import os
import signal
import threading
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import orjson

from packsync_py.errors import LockHeld

logger = logging.getLogger("packsync.lock")

LOCK_FILE_NAME = ".lock"
LOCK_STALE_SECONDS = 5 * 60


@dataclass
class LockRecord:
    """Owner and creation time (milliseconds since the epoch) of a lock."""

    pid: int
    timestamp: int

    def age_seconds(self, now: Optional[float] = None) -> float:
        now = time.time() if now is None else now
        return now - self.timestamp / 1000


def read_lock(lock_path: Path) -> Optional[LockRecord]:
    """Return the lock record at *lock_path*, or None if there is none.

    An unreadable record is reported as None so that it gets cleared like a
    stale one.
    """
    try:
        data = orjson.loads(lock_path.read_bytes())
    except FileNotFoundError:
        return None
    except (OSError, orjson.JSONDecodeError) as e:
        logger.warning(f"Ignoring unreadable lock file {lock_path}: {e}")
        return None

    if not isinstance(data, dict):
        logger.warning(f"Ignoring malformed lock file {lock_path}")
        return None
    try:
        return LockRecord(pid=int(data["pid"]), timestamp=int(data["timestamp"]))
    except (KeyError, TypeError, ValueError):
        logger.warning(f"Ignoring malformed lock file {lock_path}")
        return None


def is_lock_active(
    record: LockRecord,
    now: Optional[float] = None,
    stale_after: float = LOCK_STALE_SECONDS,
) -> bool:
    """Return True if *record* is younger than the staleness threshold."""
    return record.age_seconds(now) < stale_after


class ProcessLock:
    """File-based mutual exclusion for mutating profile operations.

    Use it as a context manager; the lock is released on every exit path.
    """

    def __init__(self, store_dir: Path, stale_after: float = LOCK_STALE_SECONDS):
        self.store_dir = store_dir
        self.path = store_dir / LOCK_FILE_NAME
        self.stale_after = stale_after
        self._held = False
        self._record: Optional[LockRecord] = None
        self._previous_handlers: Dict[int, Any] = {}

    @property
    def held(self) -> bool:
        return self._held

    @staticmethod
    def _new_record() -> LockRecord:
        return LockRecord(pid=os.getpid(), timestamp=int(time.time() * 1000))

    def _create(self) -> LockRecord:
        """
        Write a fresh record, failing if a lock file already exists.

        Raises:
            FileExistsError: If another run created the lock file first
        """
        record = self._new_record()
        fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        with os.fdopen(fd, "wb") as f:
            f.write(orjson.dumps(asdict(record)))
        return record

    def _clear_stale(self) -> None:
        """
        Remove the existing lock file if its owner is gone.

        An unreadable record is judged by the file's age instead, since it may
        be a record another run is still writing.

        Raises:
            LockHeld: If the existing record is still active
        """
        existing = read_lock(self.path)
        if existing is not None:
            if is_lock_active(existing, stale_after=self.stale_after):
                raise LockHeld(existing.pid, self.path)
            logger.warning(
                f"Clearing stale lock left by pid {existing.pid} "
                f"({int(existing.age_seconds())}s old)"
            )
        else:
            try:
                age = time.time() - self.path.stat().st_mtime
            except FileNotFoundError:
                return
            if age < self.stale_after:
                raise LockHeld(None, self.path)
            logger.warning(f"Clearing unreadable lock file {self.path}")
        self.path.unlink(missing_ok=True)

    def acquire(self) -> None:
        """
        Take the lock.

        The record is created exclusively, so of two runs starting together
        only one succeeds. A stale record is cleared and the create retried
        once.

        Raises:
            LockHeld: If a non-stale record owned by another run exists
        """
        self.store_dir.mkdir(parents=True, exist_ok=True)

        try:
            self._record = self._create()
        except FileExistsError:
            self._clear_stale()
            try:
                self._record = self._create()
            except FileExistsError:
                existing = read_lock(self.path)
                raise LockHeld(existing.pid if existing else None, self.path) from None

        self._held = True
        self._install_signal_handlers()
        atexit.register(self.release)
        logger.debug(f"Acquired lock {self.path}")

    def _still_owned(self) -> bool:
        """Return True if the record on disk is the one this run wrote."""
        current = read_lock(self.path)
        if current is not None and current == self._record:
            return True
        if current is None:
            logger.warning(f"Lock {self.path} was removed by another run")
        else:
            logger.warning(f"Lock {self.path} was taken over by pid {current.pid}")
        return False

    def refresh(self) -> None:
        """Renew the lock timestamp so long runs are not judged stale.

        Does nothing once another run has taken the lock over.
        """
        if self._record is None:
            return
        if not self._still_owned():
            self._record = None
            return
        record = self._new_record()
        tmp_path = self.path.with_name(
            f"{LOCK_FILE_NAME}.{record.pid}.{threading.get_ident()}.tmp"
        )
        tmp_path.write_bytes(orjson.dumps(asdict(record)))
        os.replace(tmp_path, self.path)
        self._record = record
        logger.debug(f"Refreshed lock {self.path}")

    def release(self) -> None:
        """Remove this run's lock file. Safe to call more than once.

        A lock file written by another run is left in place.
        """
        if self._record is not None:
            if self._still_owned():
                self.path.unlink(missing_ok=True)
            self._record = None
        if self._held:
            self._held = False
            self._restore_signal_handlers()
            atexit.unregister(self.release)
            logger.debug(f"Released lock {self.path}")

    def _handle_signal(self, signum: int, frame: Any) -> None:
        logger.warning(f"Received signal {signum}, releasing lock")
        self.release()
        if signum == signal.SIGINT:
            raise KeyboardInterrupt
        raise SystemExit(128 + signum)

    def _install_signal_handlers(self) -> None:
        # signal.signal only works from the main thread
        if threading.current_thread() is not threading.main_thread():
            return
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                self._previous_handlers[signum] = signal.signal(
                    signum, self._handle_signal
                )
            except (ValueError, OSError) as e:
                logger.debug(f"Could not install handler for signal {signum}: {e}")

    def _restore_signal_handlers(self) -> None:
        for signum, handler in self._previous_handlers.items():
            try:
                signal.signal(signum, handler)
            except (ValueError, OSError, TypeError) as e:
                logger.debug(f"Could not restore handler for signal {signum}: {e}")
        self._previous_handlers.clear()

    def __enter__(self) -> "ProcessLock":
        self.acquire()
        return self

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        self.release()
