"""
Single-instance lock for hb_transcode.

The lock file holds the owner's PID. A lock whose PID is no longer running
is treated as stale and taken over.
"""

import contextlib
import os
import time
from datetime import datetime
from pathlib import Path
from typing import Optional

import psutil

from .system_utils import CancellableTimer
from ...exceptions import LockError
from ....utils.logging import get_logger

logger = get_logger("instance_lock")

RETRY_INTERVAL = 180.0


def _lock_owner(lock_file: Path) -> Optional[int]:
    try:
        first_line = lock_file.read_text(encoding='utf-8').splitlines()[0]
        return int(first_line.strip())
    except (OSError, IndexError, ValueError):
        return None


def _try_create(lock_file: Path) -> bool:
    try:
        fd = os.open(str(lock_file), os.O_CREAT | os.O_EXCL | os.O_WRONLY)
    except FileExistsError:
        return False
    with os.fdopen(fd, 'w', encoding='utf-8') as f:
        f.write(f"{os.getpid()}\nLocked at {datetime.now().isoformat()}\n")
    return True


def acquire_lock(lock_file: Path, timeout: Optional[float] = None,
                 retry_interval: float = RETRY_INTERVAL,
                 timer: Optional[CancellableTimer] = None) -> None:
    """Create the lock file, waiting while a live process owns it.

    Raises LockError when ``timeout`` elapses or the wait is cancelled.
    """
    timer = timer or CancellableTimer()
    deadline = None if timeout is None else time.monotonic() + timeout
    lock_file.parent.mkdir(parents=True, exist_ok=True)

    while True:
        if _try_create(lock_file):
            logger.info(f"Lock acquired: {lock_file}")
            return

        owner = _lock_owner(lock_file)
        if owner is None or not psutil.pid_exists(owner):
            logger.warn(f"Removing stale lock file {lock_file} (owner pid {owner})")
            with contextlib.suppress(FileNotFoundError):
                lock_file.unlink()
            continue

        if deadline is not None and time.monotonic() >= deadline:
            raise LockError(f"Lock {lock_file} held by pid {owner}", path=lock_file)

        wait = retry_interval
        if deadline is not None:
            wait = max(0.0, min(wait, deadline - time.monotonic()))
        logger.warn(f"Lock file held by pid {owner}, retrying in {wait:.0f}s")
        if not timer.wait(wait):
            raise LockError(f"Waiting for lock {lock_file} was cancelled", path=lock_file)


def release_lock(lock_file: Path) -> bool:
    """Remove the lock file if this process owns it."""
    owner = _lock_owner(lock_file)
    if owner is None:
        logger.warn(f"Lock file {lock_file} does not exist when attempting to release")
        return False
    if owner != os.getpid():
        logger.warn(f"Lock file {lock_file} belongs to pid {owner}, not releasing")
        return False
    lock_file.unlink()
    logger.info(f"Lock released: {lock_file}")
    return True


@contextlib.contextmanager
def instance_lock(lock_file: Optional[Path], timeout: Optional[float] = None):
    """Hold the lock for the duration of the block (no-op when lock_file is None)."""
    if lock_file is None:
        yield
        return
    acquire_lock(lock_file, timeout=timeout)
    try:
        yield
    finally:
        release_lock(lock_file)
