"""
Tests for the process lock.
"""

import json
import logging
import os
import signal
import threading
import time
from pathlib import Path
from typing import List
from unittest.mock import patch

import pytest

from packsync_py.errors import LockHeld
from packsync_py.lock import (
    LOCK_STALE_SECONDS,
    LockRecord,
    ProcessLock,
    is_lock_active,
    read_lock,
)


def write_lock(path: Path, pid: int, age_seconds: float) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    timestamp = int((time.time() - age_seconds) * 1000)
    path.write_text(json.dumps({"pid": pid, "timestamp": timestamp}))


def test_acquire_writes_record(tmp_path: Path) -> None:
    lock = ProcessLock(tmp_path / "store")
    lock.acquire()
    try:
        record = read_lock(lock.path)
        assert record is not None
        assert record.pid == os.getpid()
        assert is_lock_active(record)
        assert lock.held
    finally:
        lock.release()
    assert not lock.path.exists()


def test_release_is_idempotent(tmp_path: Path) -> None:
    lock = ProcessLock(tmp_path)
    lock.release()
    lock.acquire()
    lock.release()
    lock.release()
    assert not lock.path.exists()


def test_active_lock_is_reported(tmp_path: Path) -> None:
    lock = ProcessLock(tmp_path)
    write_lock(lock.path, pid=4242, age_seconds=10)
    with pytest.raises(LockHeld) as exc_info:
        lock.acquire()
    assert exc_info.value.pid == 4242
    assert "4242" in str(exc_info.value)
    # someone else's lock is left alone
    assert read_lock(lock.path).pid == 4242  # type: ignore[union-attr]


def test_stale_lock_is_cleared(tmp_path: Path) -> None:
    lock = ProcessLock(tmp_path)
    write_lock(lock.path, pid=4242, age_seconds=LOCK_STALE_SECONDS + 1)
    with lock:
        record = read_lock(lock.path)
        assert record is not None
        assert record.pid == os.getpid()
    assert not lock.path.exists()


def test_old_malformed_lock_is_treated_as_stale(tmp_path: Path) -> None:
    lock = ProcessLock(tmp_path)
    lock.path.write_text("{not json")
    old = time.time() - LOCK_STALE_SECONDS - 1
    os.utime(lock.path, (old, old))
    assert read_lock(lock.path) is None
    with lock:
        assert read_lock(lock.path).pid == os.getpid()  # type: ignore[union-attr]


def test_fresh_malformed_lock_is_held(tmp_path: Path) -> None:
    # an empty file may be a record another run is still writing
    lock = ProcessLock(tmp_path)
    lock.path.write_text("")
    with pytest.raises(LockHeld) as exc_info:
        lock.acquire()
    assert exc_info.value.pid is None
    assert lock.path.exists()
    assert not lock.held

def test_context_manager_releases_on_error(tmp_path: Path) -> None:
    lock = ProcessLock(tmp_path)
    with pytest.raises(RuntimeError):
        with lock:
            assert lock.path.exists()
            raise RuntimeError("boom")
    assert not lock.path.exists()
    assert not lock.held


def test_refresh_renews_timestamp(tmp_path: Path) -> None:
    lock = ProcessLock(tmp_path)
    with lock:
        before = read_lock(lock.path)
        assert before is not None
        later = time.time() + 200
        with patch("packsync_py.lock.time.time", return_value=later):
            lock.refresh()
        after = read_lock(lock.path)
        assert after is not None
        assert after.timestamp == int(later * 1000)
        assert after.timestamp > before.timestamp
        assert list(tmp_path.glob("*.tmp")) == []
    assert not lock.path.exists()


def test_refresh_without_holding_does_nothing(tmp_path: Path) -> None:
    lock = ProcessLock(tmp_path)
    lock.refresh()
    assert not lock.path.exists()


def test_is_lock_active_threshold() -> None:
    now = 1_700_000_000.0
    fresh = LockRecord(pid=1, timestamp=int((now - 299) * 1000))
    stale = LockRecord(pid=1, timestamp=int((now - 301) * 1000))
    assert is_lock_active(fresh, now=now)
    assert not is_lock_active(stale, now=now)


def test_sigterm_releases_lock(tmp_path: Path) -> None:
    lock = ProcessLock(tmp_path)
    original = signal.getsignal(signal.SIGTERM)
    lock.acquire()
    assert signal.getsignal(signal.SIGTERM) == lock._handle_signal
    with pytest.raises(SystemExit) as exc_info:
        lock._handle_signal(signal.SIGTERM, None)
    assert exc_info.value.code == 128 + signal.SIGTERM
    assert not lock.path.exists()
    assert signal.getsignal(signal.SIGTERM) == original


def test_sigint_releases_lock(tmp_path: Path) -> None:
    lock = ProcessLock(tmp_path)
    lock.acquire()
    with pytest.raises(KeyboardInterrupt):
        lock._handle_signal(signal.SIGINT, None)
    assert not lock.path.exists()
    assert not lock.held


def test_concurrent_acquire_has_one_winner(tmp_path: Path) -> None:
    barrier = threading.Barrier(2)
    winners: List[ProcessLock] = []
    refused: List[LockHeld] = []
    guard = threading.Lock()

    def contend() -> None:
        lock = ProcessLock(tmp_path)
        barrier.wait()
        try:
            lock.acquire()
        except LockHeld as e:
            with guard:
                refused.append(e)
            return
        with guard:
            winners.append(lock)

    threads = [threading.Thread(target=contend) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(winners) == 1
    assert len(refused) == 1
    winners[0].release()
    assert not (tmp_path / ".lock").exists()


def test_exclusive_create_refuses_existing_file(tmp_path: Path) -> None:
    lock = ProcessLock(tmp_path)
    write_lock(lock.path, pid=4242, age_seconds=0)
    # the check-then-write window: the record appears after it was read
    with patch("packsync_py.lock.read_lock", return_value=None):
        with pytest.raises(LockHeld):
            lock.acquire()
    assert read_lock(lock.path).pid == 4242  # type: ignore[union-attr]


def test_release_leaves_taken_over_lock(
    tmp_path: Path, caplog: pytest.LogCaptureFixture
) -> None:
    slow = ProcessLock(tmp_path)
    slow.acquire()
    # another run judged the record stale and replaced it
    write_lock(slow.path, pid=999999, age_seconds=0)

    with caplog.at_level(logging.WARNING, logger="packsync.lock"):
        slow.release()

    assert read_lock(slow.path).pid == 999999  # type: ignore[union-attr]
    assert not slow.held
    assert "taken over by pid 999999" in caplog.text


def test_refresh_leaves_taken_over_lock(tmp_path: Path) -> None:
    slow = ProcessLock(tmp_path)
    slow.acquire()
    try:
        write_lock(slow.path, pid=999999, age_seconds=0)
        slow.refresh()
        record = read_lock(slow.path)
        assert record is not None
        assert record.pid == 999999
    finally:
        slow.release()
    assert read_lock(slow.path).pid == 999999  # type: ignore[union-attr]


def test_release_after_lock_file_removed(tmp_path: Path) -> None:
    lock = ProcessLock(tmp_path)
    lock.acquire()
    lock.path.unlink()
    lock.release()
    assert not lock.path.exists()
    assert not lock.held
