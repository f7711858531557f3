"""
Process-level helpers: external commands, scratch file tracking, and the
cancellable pauses used between encoder attempts, samples and search retries.
"""

import atexit
import os
import shlex
import subprocess
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from ....utils.logging import get_logger

logger = get_logger("system_utils")


class _TempFiles(set):
    """Scratch files that must not outlive the process."""

    def add(self, item):  # type: ignore[override]
        super().add(str(item))

    def discard(self, item):  # type: ignore[override]
        super().discard(str(item))


TEMP_FILES = _TempFiles()


def _cleanup():
    """Remove scratch files left behind by an interrupted run."""
    for f in list(TEMP_FILES):
        try:
            if os.path.exists(f):
                os.remove(f)
                logger.cleanup(f"removed {f}")
        except OSError as e:
            logger.warn(f"Could not remove scratch file {f}: {e}")
        finally:
            TEMP_FILES.discard(f)


atexit.register(_cleanup)


def cleanup_temp_files():
    """Delete tracked scratch files now (also runs at interpreter exit)."""
    _cleanup()


def remove_file(path: Path) -> bool:
    """Delete a file if present. Returns True when something was removed."""
    try:
        path.unlink()
        return True
    except FileNotFoundError:
        return False
    finally:
        TEMP_FILES.discard(path)


def run_command(cmd: List[str], timeout: Optional[float] = 30, capture_output: bool = True,
                text: bool = True, check: bool = False) -> subprocess.CompletedProcess:
    """Run an external tool, logging the quoted command line in debug mode.

    ``timeout=None`` waits for the process to finish; a timeout is logged and re-raised.
    """
    logger.cmd(" ".join(shlex.quote(c) for c in cmd))
    try:
        return subprocess.run(
            cmd,
            capture_output=capture_output,
            text=text,
            encoding="utf-8" if text else None,
            errors="replace" if text else None,
            timeout=timeout,
            check=check
        )
    except subprocess.TimeoutExpired:
        logger.error(f"Command timed out after {timeout}s: {' '.join(cmd[:3])}...")
        raise


class CancellableTimer:
    """Blocking wait that another thread (or a signal handler) can cut short."""

    def __init__(self):
        self._cancelled = threading.Event()

    def wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``. Returns False if the wait was cancelled."""
        if seconds <= 0:
            return not self._cancelled.is_set()
        return not self._cancelled.wait(timeout=seconds)

    def cancel(self):
        self._cancelled.set()

    def reset(self):
        self._cancelled.clear()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()


@dataclass
class DelayPolicy:
    """Fixed pauses used between encoder attempts, samples and search retries."""
    strategy_backoff: float = 5.0
    sample_pause: float = 1.0
    search_retry_pause: float = 2.0
    timer: CancellableTimer = field(default_factory=CancellableTimer)

    @classmethod
    def from_config(cls, config) -> 'DelayPolicy':
        return cls(strategy_backoff=config.strategy_backoff,
                   sample_pause=config.sample_pause,
                   search_retry_pause=config.search_retry_pause)

    @classmethod
    def none(cls) -> 'DelayPolicy':
        """No waiting at all; used by tests and dry runs."""
        return cls(strategy_backoff=0.0, sample_pause=0.0, search_retry_pause=0.0)

    def after_strategy_failure(self) -> bool:
        return self.timer.wait(self.strategy_backoff)

    def between_samples(self) -> bool:
        return self.timer.wait(self.sample_pause)

    def before_search_retry(self) -> bool:
        return self.timer.wait(self.search_retry_pause)
